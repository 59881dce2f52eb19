"""Consent Lifecycle Manager.

Cycle de vie: REQUESTED -> ACTIVE -> {REVOKED, EXPIRED}.

- REQUESTED: créé par le patient ou le professionnel. Sans réponse avant
  request_expires_at (48h par défaut), la demande ne peut plus être accordée
  et ne bloque plus une nouvelle demande.
- ACTIVE: seulement par le patient approuvant une demande
- REVOKED: par le patient, depuis ACTIVE (ou refus d'une demande)
- EXPIRED: passif. Un ACTIVE échu est lu comme EXPIRED même avant d'être
  persisté comme tel; expire_lapsed() persiste ces transitions.

Chaque transition écrit une entrée d'audit portant previousStatus et
newStatus, dans la même transaction que la mutation.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from opentelemetry import trace

from app.core.config import settings
from app.core.exceptions import (
    ConsentConflictError,
    ConsentNotFoundError,
    ConsentStateError,
    IdentityNotFoundError,
)
from app.models.consent import CONSENT_SCOPES, ConsentGrant
from app.repositories.base import ConsentFilter, Store
from app.services.audit_service import SYSTEM_ACTOR, AuditAction, AuditContext, AuditTrail

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Portées temporelles: chacune couvre les fenêtres plus courtes
_TIME_WINDOWS = ("LAST_3_MONTHS", "LAST_6_MONTHS", "LAST_YEAR")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def effective_status(consent: ConsentGrant, now: datetime) -> str:
    """Statut logique: un ACTIVE dont expires_at est dépassé est EXPIRED."""
    if consent.status == "ACTIVE" and consent.expires_at is not None and consent.expires_at <= now:
        return "EXPIRED"
    return consent.status


def request_lapsed(consent: ConsentGrant, now: datetime) -> bool:
    """Une demande REQUESTED restée sans réponse après son échéance."""
    return (
        consent.status == "REQUESTED"
        and consent.request_expires_at is not None
        and consent.request_expires_at <= now
    )


def scope_covers(consent: ConsentGrant, requested: str) -> bool:
    """Indique si la portée du consentement couvre la portée (ou le type) demandé."""
    if consent.scope == "ALL_RECORDS" or requested == consent.scope:
        return True
    if consent.scope == "SPECIFIC_TYPES":
        return requested in (consent.specific_types or [])
    if consent.scope in _TIME_WINDOWS and requested in _TIME_WINDOWS:
        return _TIME_WINDOWS.index(requested) <= _TIME_WINDOWS.index(consent.scope)
    return False


class ConsentLifecycleManager:
    def __init__(self, store: Store, audit: AuditTrail, clock: Callable[[], datetime] = _utcnow):
        self._store = store
        self._audit = audit
        self._clock = clock

    # -------------------------------------------------------------------------
    # Lecture
    # -------------------------------------------------------------------------

    async def get_consent(self, consent_id: str) -> ConsentGrant:
        consent = await self._store.consents.get(consent_id)
        if consent is None:
            raise ConsentNotFoundError(consent_id)
        return consent

    async def list_consents(self, filters: ConsentFilter) -> list[ConsentGrant]:
        with tracer.start_as_current_span("list_consents") as span:
            consents = await self._store.consents.search(filters, self._clock())
            span.set_attribute("consent.results", len(consents))
            return consents

    def effective_status(self, consent: ConsentGrant) -> str:
        return effective_status(consent, self._clock())

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def request_consent(
        self,
        patient_id: str,
        provider_id: str,
        requested_by: str,
        purpose: str,
        *,
        scope: str = "ALL_RECORDS",
        specific_types: list[str] | None = None,
        permissions: list[str] | None = None,
        message: str | None = None,
        expires_at: datetime | None = None,
        context: AuditContext | None = None,
    ) -> ConsentGrant:
        """
        Crée une demande de consentement (REQUESTED).

        Raises:
            ValueError: Portée inconnue, types manquants, finalité vide ou expiration passée
            IdentityNotFoundError: Patient inconnu (ou pas un patient), professionnel inconnu
            ConsentConflictError: Demande ouverte ou consentement actif déjà existant
            StorageError: Si la persistance échoue
        """
        if scope not in CONSENT_SCOPES:
            raise ValueError(f"Invalid scope '{scope}'. Must be one of: {', '.join(CONSENT_SCOPES)}")
        if scope == "SPECIFIC_TYPES" and not specific_types:
            raise ValueError("specific_types is required when scope is SPECIFIC_TYPES")
        if not purpose or not purpose.strip():
            raise ValueError("purpose is required")

        with tracer.start_as_current_span("request_consent") as span:
            span.set_attribute("consent.patient_id", patient_id)
            span.set_attribute("consent.provider_id", provider_id)

            now = self._clock()
            if expires_at is not None and expires_at <= now:
                raise ValueError("expires_at must be in the future")

            async with self._store.transaction():
                # Verrou sur le patient: les demandes concurrentes du même patient sont sérialisées
                patient = await self._store.identities.get(patient_id, lock=True)
                if patient is None or patient.role != "patient":
                    raise IdentityNotFoundError(patient_id)
                if await self._store.identities.get(provider_id) is None:
                    raise IdentityNotFoundError(provider_id)

                existing = await self._store.consents.find_open(patient_id, provider_id, now)
                if existing is not None:
                    raise ConsentConflictError(existing.id, existing.status)

                consent = ConsentGrant(
                    patient_id=patient_id,
                    provider_id=provider_id,
                    requested_by=requested_by,
                    status="REQUESTED",
                    purpose=purpose.strip(),
                    scope=scope,
                    specific_types=list(specific_types) if scope == "SPECIFIC_TYPES" else None,
                    permissions=list(permissions or settings.CONSENT_DEFAULT_PERMISSIONS),
                    message=message,
                    created_at=now,
                    expires_at=expires_at,
                    request_expires_at=now + timedelta(hours=settings.CONSENT_REQUEST_TTL_HOURS),
                    access_count=0,
                )
                await self._store.consents.add(consent)

                await self._audit.record(
                    subject_id=patient_id,
                    actor_id=requested_by,
                    action=AuditAction.CONSENT_REQUESTED,
                    details={
                        "consentId": consent.id,
                        "providerId": provider_id,
                        "previousStatus": None,
                        "newStatus": "REQUESTED",
                        "purpose": consent.purpose,
                        "scope": scope,
                        "permissions": consent.permissions,
                    },
                    timestamp=now,
                    context=context,
                )

            span.set_attribute("consent.id", consent.id)
            span.add_event("Demande de consentement créée")
            logger.info(f"Consentement {consent.id} demandé par {requested_by}")
            return consent

    async def _load_for_patient(self, consent_id: str, patient_id: str) -> ConsentGrant:
        consent = await self._store.consents.get(consent_id, lock=True)
        if consent is None or consent.patient_id != patient_id:
            raise ConsentNotFoundError(consent_id)
        return consent

    async def grant_consent(
        self,
        consent_id: str,
        patient_id: str,
        *,
        expires_at: datetime | None = None,
        context: AuditContext | None = None,
    ) -> ConsentGrant:
        """
        Le patient approuve une demande: REQUESTED -> ACTIVE.

        Raises:
            ConsentNotFoundError: Consentement inconnu ou d'un autre patient
            ConsentStateError: Consentement hors de l'état REQUESTED, demande échue,
                ou expiration déjà passée sans nouvelle date
        """
        with tracer.start_as_current_span("grant_consent") as span:
            span.set_attribute("consent.id", consent_id)

            now = self._clock()
            if expires_at is not None and expires_at <= now:
                raise ValueError("expires_at must be in the future")

            async with self._store.transaction():
                consent = await self._load_for_patient(consent_id, patient_id)
                if consent.status != "REQUESTED":
                    raise ConsentStateError(consent_id, effective_status(consent, now), "grant")
                if request_lapsed(consent, now):
                    span.add_event("Demande échue")
                    raise ConsentStateError(consent_id, "EXPIRED", "grant")
                if expires_at is None and consent.expires_at is not None and consent.expires_at <= now:
                    raise ConsentStateError(consent_id, "EXPIRED", "grant")

                consent.status = "ACTIVE"
                consent.granted_at = now
                if expires_at is not None:
                    consent.expires_at = expires_at

                await self._audit.record(
                    subject_id=patient_id,
                    actor_id=patient_id,
                    action=AuditAction.CONSENT_GRANTED,
                    details={
                        "consentId": consent_id,
                        "providerId": consent.provider_id,
                        "previousStatus": "REQUESTED",
                        "newStatus": "ACTIVE",
                        "expiresAt": consent.expires_at.isoformat() if consent.expires_at else None,
                    },
                    timestamp=now,
                    context=context,
                )

            span.add_event("Consentement accordé")
            logger.info(f"Consentement {consent_id} accordé par {patient_id}")
            return consent

    async def deny_consent(
        self,
        consent_id: str,
        patient_id: str,
        reason: str | None = None,
        context: AuditContext | None = None,
    ) -> ConsentGrant:
        """Le patient refuse une demande: REQUESTED -> REVOKED."""
        with tracer.start_as_current_span("deny_consent") as span:
            span.set_attribute("consent.id", consent_id)

            now = self._clock()
            async with self._store.transaction():
                consent = await self._load_for_patient(consent_id, patient_id)
                if consent.status != "REQUESTED":
                    raise ConsentStateError(consent_id, effective_status(consent, now), "deny")

                consent.status = "REVOKED"
                consent.revoked_at = now
                consent.revocation_reason = reason

                await self._audit.record(
                    subject_id=patient_id,
                    actor_id=patient_id,
                    action=AuditAction.CONSENT_DENIED,
                    details={
                        "consentId": consent_id,
                        "providerId": consent.provider_id,
                        "previousStatus": "REQUESTED",
                        "newStatus": "REVOKED",
                        "reason": reason,
                    },
                    timestamp=now,
                    context=context,
                )

            span.add_event("Demande refusée")
            logger.info(f"Demande {consent_id} refusée par {patient_id}")
            return consent

    async def revoke_consent(
        self,
        consent_id: str,
        patient_id: str,
        reason: str | None = None,
        context: AuditContext | None = None,
    ) -> ConsentGrant:
        """
        Le patient retire un consentement actif: ACTIVE -> REVOKED.

        Un consentement échu (EXPIRED logique) ne peut plus être révoqué.
        """
        with tracer.start_as_current_span("revoke_consent") as span:
            span.set_attribute("consent.id", consent_id)

            now = self._clock()
            async with self._store.transaction():
                consent = await self._load_for_patient(consent_id, patient_id)
                current = effective_status(consent, now)
                if current != "ACTIVE":
                    raise ConsentStateError(consent_id, current, "revoke")

                consent.status = "REVOKED"
                consent.revoked_at = now
                consent.revocation_reason = reason

                await self._audit.record(
                    subject_id=patient_id,
                    actor_id=patient_id,
                    action=AuditAction.CONSENT_REVOKED,
                    details={
                        "consentId": consent_id,
                        "providerId": consent.provider_id,
                        "previousStatus": "ACTIVE",
                        "newStatus": "REVOKED",
                        "reason": reason,
                    },
                    timestamp=now,
                    context=context,
                )

            span.add_event("Consentement révoqué")
            logger.info(f"Consentement {consent_id} révoqué par {patient_id}")
            return consent

    async def expire_lapsed(self, now: datetime | None = None, limit: int = 500) -> int:
        """
        Persiste EXPIRED pour les consentements ACTIVE échus.

        Les lignes déjà verrouillées par un autre balayage sont ignorées.

        Returns:
            Nombre de consentements expirés
        """
        with tracer.start_as_current_span("expire_lapsed_consents") as span:
            now = now or self._clock()
            async with self._store.transaction():
                lapsed = await self._store.consents.list_lapsed(now, limit)
                for consent in lapsed:
                    consent.status = "EXPIRED"
                    await self._audit.record(
                        subject_id=consent.patient_id,
                        actor_id=SYSTEM_ACTOR,
                        action=AuditAction.CONSENT_EXPIRED,
                        details={
                            "consentId": consent.id,
                            "providerId": consent.provider_id,
                            "previousStatus": "ACTIVE",
                            "newStatus": "EXPIRED",
                            "expiresAt": consent.expires_at.isoformat() if consent.expires_at else None,
                        },
                        timestamp=now,
                    )

            span.set_attribute("consent.expired", len(lapsed))
            if lapsed:
                logger.info(f"{len(lapsed)} consentement(s) expiré(s)")
            return len(lapsed)

    # -------------------------------------------------------------------------
    # Contrôle d'accès
    # -------------------------------------------------------------------------

    async def authorize_access(
        self,
        patient_id: str,
        provider_id: str,
        action: str = "read",
        scopes: list[str] | None = None,
    ) -> bool:
        """
        Indique si provider_id peut réaliser action sur les données du patient.

        Le patient accède toujours à ses propres données. Sinon un
        consentement ACTIVE non échu est requis, dont les permissions
        incluent action et dont la portée couvre chaque portée demandée.
        Un accès accordé incrémente access_count.
        """
        if patient_id == provider_id:
            return True

        with tracer.start_as_current_span("authorize_consent_access") as span:
            span.set_attribute("consent.patient_id", patient_id)
            span.set_attribute("consent.provider_id", provider_id)
            span.set_attribute("consent.action", action)

            now = self._clock()
            async with self._store.transaction():
                consent = await self._store.consents.find_active(patient_id, provider_id, now)
                if consent is None or action not in (consent.permissions or []):
                    span.set_attribute("consent.granted", False)
                    return False
                if not all(scope_covers(consent, scope) for scope in scopes or []):
                    span.set_attribute("consent.granted", False)
                    return False

                consent.access_count = (consent.access_count or 0) + 1
                consent.last_accessed_at = now

            span.set_attribute("consent.granted", True)
            span.set_attribute("consent.id", consent.id)
            return True
