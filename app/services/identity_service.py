"""Identity Status Machine.

L'ensemble des statuts est plat: toute transition entre les quatre statuts
est permise à un administrateur (surcharge administrative volontaire, sans
graphe d'adjacence). Chaque mutation et son entrée d'audit sont écrites
dans la même transaction.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from opentelemetry import trace

from app.core.exceptions import IdentityNotFoundError, InvalidStatusError
from app.models.identity import IDENTITY_STATUSES, HealthProfile, Identity
from app.repositories.base import Store
from app.services.audit_service import AuditAction, AuditContext, AuditTrail

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_STATUS_REASON = "No reason provided"
DEFAULT_VERIFICATION_NOTES = "No notes provided"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IdentityStatusMachine:
    def __init__(self, store: Store, audit: AuditTrail, clock: Callable[[], datetime] = _utcnow):
        self._store = store
        self._audit = audit
        self._clock = clock

    async def get_identity(self, subject_id: str) -> Identity:
        identity = await self._store.identities.get(subject_id)
        if identity is None:
            raise IdentityNotFoundError(subject_id)
        return identity

    async def set_status(
        self,
        subject_id: str,
        new_status: str,
        actor_id: str,
        reason: str | None = None,
        context: AuditContext | None = None,
    ) -> Identity:
        """
        Change le statut d'une identité.

        Args:
            subject_id: Identité ciblée
            new_status: active | suspended | pending_verification | pending_approval
            actor_id: Administrateur à l'origine du changement
            reason: Motif (défaut: "No reason provided")
            context: IP et user agent de la requête

        Returns:
            Identity mise à jour

        Raises:
            InvalidStatusError: Si new_status est hors de l'ensemble autorisé
            IdentityNotFoundError: Si l'identité n'existe pas
            StorageError: Si la mutation ou l'audit échoue (rien n'est validé)
        """
        if new_status not in IDENTITY_STATUSES:
            raise InvalidStatusError(new_status, list(IDENTITY_STATUSES))

        with tracer.start_as_current_span("set_identity_status") as span:
            span.set_attribute("identity.id", subject_id)
            span.set_attribute("identity.new_status", new_status)

            now = self._clock()
            async with self._store.transaction():
                identity = await self._store.identities.get(subject_id, lock=True)
                if identity is None:
                    raise IdentityNotFoundError(subject_id)

                previous_status = identity.status
                identity.status = new_status
                identity.updated_at = now

                await self._audit.record(
                    subject_id=subject_id,
                    actor_id=actor_id,
                    action=AuditAction.STATUS_UPDATED,
                    details={
                        "previousStatus": previous_status,
                        "newStatus": new_status,
                        "reason": reason or DEFAULT_STATUS_REASON,
                        "actorId": actor_id,
                    },
                    timestamp=now,
                    context=context,
                )

            span.add_event("Statut mis à jour", {"previous_status": previous_status})
            logger.info(f"Statut de {subject_id}: {previous_status} -> {new_status} (par {actor_id})")
            return identity

    async def set_verified(
        self,
        subject_id: str,
        verified: bool,
        actor_id: str,
        notes: str | None = None,
        context: AuditContext | None = None,
    ) -> Identity:
        """
        Positionne le drapeau de vérification.

        verified=True promeut le statut à active s'il ne l'est pas déjà et,
        pour un médecin, horodate verified_at sur le profil de santé (créé
        au besoin). verified=False laisse le statut inchangé.

        Raises:
            IdentityNotFoundError: Si l'identité n'existe pas
            StorageError: Si la mutation ou l'audit échoue
        """
        with tracer.start_as_current_span("set_identity_verified") as span:
            span.set_attribute("identity.id", subject_id)
            span.set_attribute("identity.verified", verified)

            now = self._clock()
            async with self._store.transaction():
                identity = await self._store.identities.get(subject_id, lock=True)
                if identity is None:
                    raise IdentityNotFoundError(subject_id)

                previous_verification = identity.is_verified
                previous_status = identity.status
                identity.is_verified = verified
                if verified and identity.status != "active":
                    identity.status = "active"
                identity.updated_at = now

                if verified and identity.role == "doctor":
                    profile = await self._store.identities.get_profile(subject_id)
                    if profile is None:
                        await self._store.identities.add_profile(HealthProfile(user_id=subject_id, verified_at=now))
                    else:
                        profile.verified_at = now
                    span.add_event("Profil médecin horodaté")

                await self._audit.record(
                    subject_id=subject_id,
                    actor_id=actor_id,
                    action=AuditAction.VERIFIED if verified else AuditAction.UNVERIFIED,
                    details={
                        "previousVerification": previous_verification,
                        "newVerification": verified,
                        "previousStatus": previous_status,
                        "newStatus": identity.status,
                        "notes": notes or DEFAULT_VERIFICATION_NOTES,
                    },
                    timestamp=now,
                    context=context,
                )

            logger.info(f"Vérification de {subject_id}: {previous_verification} -> {verified} (par {actor_id})")
            return identity
