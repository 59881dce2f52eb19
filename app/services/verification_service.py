"""Émission et vérification des codes à usage unique.

Pattern:
1. issue(): code aléatoire (secrets), stockage du HMAC seul, livraison hors
   bande dans la même transaction. Un échec de livraison annule l'émission.
2. verify(): consommation du code correspondant par compare-and-swap
   (used_at IS NULL), seul le gagnant réussit. Sans correspondance, le
   seuil de tentatives de la fenêtre glissante est appliqué.

Le code en clair n'est jamais persisté ni journalisé.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import metrics, trace
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.events import EventBusUnavailableError, publish
from app.core.exceptions import CodeDeliveryError, InvalidCodeError, TooManyAttemptsError
from app.core.integrity import hash_code
from app.models.verification import VerificationCode
from app.repositories.base import Store
from app.services.audit_service import AuditAction, AuditContext, AuditTrail

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

meter = metrics.get_meter("core-curanet-consent.verification")

codes_issued_counter = meter.create_counter(
    name="verification_codes_issued_total",
    description="Total number of verification codes issued",
    unit="1",
)

code_verifications_counter = meter.create_counter(
    name="verification_code_checks_total",
    description="Verification attempts by outcome",
    unit="1",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Livraison
# =============================================================================


class CodeDelivery(ABC):
    """Capacité externe de livraison d'un code vers une adresse."""

    channel: str = "email"

    @abstractmethod
    async def send(self, address: str, payload: dict[str, Any]) -> bool:
        """Retourne True si le message a été accepté pour livraison."""


class EventBusCodeDelivery(CodeDelivery):
    """Livraison via le bus d'événements Redis (service de notification)."""

    def __init__(self, subject: str | None = None, max_attempts: int | None = None):
        self.subject = subject or settings.CODE_DELIVERY_SUBJECT
        self.max_attempts = max_attempts or settings.CODE_DELIVERY_MAX_ATTEMPTS

    async def send(self, address: str, payload: dict[str, Any]) -> bool:
        try:
            await publish(self.subject, {"to": address, **payload}, max_retries=self.max_attempts)
        except (RedisError, OSError, EventBusUnavailableError) as e:
            logger.error(f"Livraison du code impossible via '{self.subject}': {e.__class__.__name__}")
            return False
        return True


# =============================================================================
# Moteur
# =============================================================================


@dataclass(frozen=True)
class VerificationSuccess:
    """Code consommé avec succès."""

    code_id: int
    subject_id: str
    target_value: str
    verified_at: datetime


class CodeVerificationEngine:
    """Machine à états par couple (sujet, cible), bornée à la fenêtre de tentatives."""

    def __init__(
        self,
        store: Store,
        delivery: CodeDelivery,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._delivery = delivery
        self._audit = audit
        self._clock = clock

    @staticmethod
    def generate_code(length: int | None = None) -> str:
        """Code numérique aléatoire sans zéro initial (6 chiffres par défaut)."""
        length = length or settings.OTP_LENGTH
        lower = 10 ** (length - 1)
        return str(secrets.randbelow(9 * lower) + lower)

    async def issue(
        self,
        subject_id: str,
        target_value: str,
        *,
        actor_id: str | None = None,
        context: AuditContext | None = None,
    ) -> str:
        """
        Émet un code pour (subject_id, target_value) et le livre.

        Returns:
            Code en clair, retourné une seule fois

        Raises:
            CodeDeliveryError: Si la livraison échoue (rien n'est conservé)
            StorageError: Si la persistance échoue
        """
        with tracer.start_as_current_span("issue_verification_code") as span:
            span.set_attribute("verification.subject_id", subject_id)
            span.set_attribute("verification.channel", self._delivery.channel)

            code = self.generate_code()
            now = self._clock()
            expires_at = now + timedelta(minutes=settings.OTP_TTL_MINUTES)

            async with self._store.transaction():
                record = VerificationCode(
                    subject_id=subject_id,
                    target_value=target_value,
                    channel=self._delivery.channel,
                    code_hash=hash_code(code),
                    created_at=now,
                    expires_at=expires_at,
                    attempts=0,
                )
                await self._store.codes.add(record)

                if self._audit is not None:
                    await self._audit.record(
                        subject_id=subject_id,
                        actor_id=actor_id or subject_id,
                        action=AuditAction.VERIFICATION_CODE_ISSUED,
                        details={
                            "channel": self._delivery.channel,
                            "codeId": record.id,
                            "expiresAt": expires_at.isoformat(),
                        },
                        timestamp=now,
                        context=context,
                    )

                delivered = await self._delivery.send(
                    target_value,
                    {
                        "subject_id": subject_id,
                        "code": code,
                        "expires_in_minutes": settings.OTP_TTL_MINUTES,
                    },
                )
                if not delivered:
                    span.add_event("Échec de livraison, émission annulée")
                    raise CodeDeliveryError(self._delivery.channel)

            codes_issued_counter.add(1, {"channel": self._delivery.channel})
            span.add_event("Code émis et livré")
            logger.info(f"Code de vérification émis pour {subject_id} (id={record.id})")
            return code

    async def verify(self, subject_id: str, target_value: str, supplied_code: str) -> VerificationSuccess:
        """
        Vérifie un code fourni.

        Le code correspondant est cherché en premier: un code valide est
        consommé même après des échecs. Le seuil de la fenêtre n'est
        consulté qu'en l'absence de correspondance.

        Raises:
            TooManyAttemptsError: Aucune correspondance et seuil atteint dans la fenêtre
            InvalidCodeError: Code inconnu, expiré, déjà utilisé ou consommé par une requête concurrente
            StorageError: Si la persistance échoue
        """
        with tracer.start_as_current_span("verify_verification_code") as span:
            span.set_attribute("verification.subject_id", subject_id)

            now = self._clock()
            window_start = now - timedelta(minutes=settings.OTP_ATTEMPT_WINDOW_MINUTES)
            code_hash = hash_code(supplied_code or "")

            async with self._store.transaction():
                candidate = await self._store.codes.find_usable(subject_id, target_value, code_hash, now)
                if candidate is not None and await self._store.codes.mark_used(candidate.id, now):
                    success = VerificationSuccess(
                        code_id=candidate.id,
                        subject_id=subject_id,
                        target_value=target_value,
                        verified_at=now,
                    )
                else:
                    success = None
                    attempts = await self._store.codes.sum_attempts(subject_id, target_value, window_start)
                    span.set_attribute("verification.window_attempts", attempts)
                    if attempts >= settings.OTP_MAX_ATTEMPTS:
                        code_verifications_counter.add(1, {"outcome": "too_many_attempts"})
                        span.add_event("Seuil de tentatives atteint")
                        raise TooManyAttemptsError(attempts, settings.OTP_ATTEMPT_WINDOW_MINUTES)

                    latest = await self._store.codes.latest_since(subject_id, target_value, window_start)
                    if latest is not None:
                        await self._store.codes.increment_attempts(latest.id)

            if success is None:
                # L'incrément est validé avant de signaler l'échec
                code_verifications_counter.add(1, {"outcome": "invalid"})
                span.add_event("Code invalide")
                raise InvalidCodeError()

            code_verifications_counter.add(1, {"outcome": "success"})
            span.add_event("Code vérifié")
            logger.info(f"Code {success.code_id} consommé pour {subject_id}")
            return success
