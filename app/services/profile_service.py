"""Changement d'adresse email prouvé par code à usage unique.

L'email de l'identité n'est modifié qu'après un verify() réussi.
"""

import logging

from opentelemetry import trace

from app.core.exceptions import EmailAlreadyInUseError, IdentityNotFoundError
from app.models.identity import Identity
from app.repositories.base import Store
from app.services.audit_service import AuditAction, AuditContext, AuditTrail
from app.services.verification_service import CodeVerificationEngine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class ProfileService:
    def __init__(self, store: Store, audit: AuditTrail, codes: CodeVerificationEngine):
        self._store = store
        self._audit = audit
        self._codes = codes

    async def _ensure_available(self, subject_id: str, email: str) -> Identity:
        identity = await self._store.identities.get(subject_id)
        if identity is None:
            raise IdentityNotFoundError(subject_id)
        owner = await self._store.identities.get_by_email(email)
        if owner is not None and owner.id != subject_id:
            raise EmailAlreadyInUseError()
        return identity

    async def request_email_change(
        self, subject_id: str, email: str, context: AuditContext | None = None
    ) -> None:
        """
        Émet et livre un code vers la nouvelle adresse.

        Raises:
            IdentityNotFoundError: Identité inconnue
            EmailAlreadyInUseError: Adresse déjà utilisée par une autre identité
            CodeDeliveryError: Livraison impossible
        """
        email = normalize_email(email)
        with tracer.start_as_current_span("request_email_change") as span:
            span.set_attribute("identity.id", subject_id)
            await self._ensure_available(subject_id, email)
            # Le code en clair est livré par le moteur, jamais retourné à l'API
            await self._codes.issue(subject_id, email, actor_id=subject_id, context=context)
            span.add_event("Code de changement d'email émis")

    async def confirm_email_change(
        self, subject_id: str, email: str, code: str, context: AuditContext | None = None
    ) -> Identity:
        """
        Vérifie le code puis remplace l'email de l'identité.

        Raises:
            InvalidCodeError / TooManyAttemptsError: Vérification échouée (email inchangé)
            EmailAlreadyInUseError: Adresse prise entre-temps
        """
        email = normalize_email(email)
        with tracer.start_as_current_span("confirm_email_change") as span:
            span.set_attribute("identity.id", subject_id)

            await self._codes.verify(subject_id, email, code)

            async with self._store.transaction():
                await self._ensure_available(subject_id, email)
                identity = await self._store.identities.get(subject_id, lock=True)
                previous_email = identity.email
                identity.email = email

                await self._audit.record(
                    subject_id=subject_id,
                    actor_id=subject_id,
                    action=AuditAction.EMAIL_UPDATED,
                    details={"previousEmail": previous_email, "newEmail": email},
                    context=context,
                )

            span.add_event("Email mis à jour")
            logger.info(f"Email mis à jour pour {subject_id}")
            return identity
