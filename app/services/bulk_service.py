"""Bulk Action Coordinator: actions administratives groupées sur les identités."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

from app.core.exceptions import BulkValidationError
from app.repositories.base import Store
from app.services.audit_service import AuditAction, AuditContext, AuditTrail

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# action -> (valeurs appliquées, étiquette d'audit)
BULK_ACTIONS: dict[str, tuple[dict[str, Any], AuditAction]] = {
    "suspend": ({"status": "suspended"}, AuditAction.BULK_SUSPENDED),
    "activate": ({"status": "active"}, AuditAction.BULK_ACTIVATED),
    "verify": ({"is_verified": True, "status": "active"}, AuditAction.BULK_VERIFIED),
    "unverify": ({"is_verified": False}, AuditAction.BULK_UNVERIFIED),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class BulkResult:
    action: str
    affected: int
    subject_ids: list[str]


class BulkActionCoordinator:
    def __init__(self, store: Store, audit: AuditTrail, clock: Callable[[], datetime] = _utcnow):
        self._store = store
        self._audit = audit
        self._clock = clock

    async def apply_bulk(
        self,
        action: str,
        subject_ids: list[str] | set[str],
        actor_id: str,
        reason: str | None = None,
        context: AuditContext | None = None,
    ) -> BulkResult:
        """
        Applique une action à un ensemble d'identités, tout ou rien.

        La validation précède toute écriture: ensemble vide, action inconnue
        ou identifiant introuvable font échouer l'appel sans mutation. La
        mise à jour multi-lignes et les entrées d'audit (une par identité)
        partagent la même transaction.

        Raises:
            BulkValidationError: Requête invalide (aucune mutation)
            StorageError: Si la mutation ou l'audit échoue (rien n'est validé)
        """
        ids = sorted(set(subject_ids or []))
        if not ids:
            raise BulkValidationError("subject_ids must not be empty")
        if action not in BULK_ACTIONS:
            raise BulkValidationError(
                f"Invalid action '{action}'. Must be one of: {', '.join(BULK_ACTIONS)}"
            )

        values, audit_action = BULK_ACTIONS[action]
        reason = reason or f"Bulk {action} action"

        with tracer.start_as_current_span("apply_bulk_action") as span:
            span.set_attribute("bulk.action", action)
            span.set_attribute("bulk.requested", len(ids))

            now = self._clock()
            async with self._store.transaction():
                identities = await self._store.identities.get_many(ids)
                found = {identity.id for identity in identities}
                missing = [subject_id for subject_id in ids if subject_id not in found]
                if missing:
                    span.add_event("Identités introuvables", {"missing": len(missing)})
                    raise BulkValidationError(f"{len(missing)} identity id(s) not found", missing_ids=missing)

                # Etat avant mutation, pour l'audit
                previous = {
                    identity.id: {"status": identity.status, "is_verified": identity.is_verified}
                    for identity in identities
                }

                affected = await self._store.identities.bulk_update(ids, {**values, "updated_at": now})

                for subject_id in ids:
                    before = previous[subject_id]
                    await self._audit.record(
                        subject_id=subject_id,
                        actor_id=actor_id,
                        action=audit_action,
                        details={
                            "action": action,
                            "reason": reason,
                            "previousStatus": before["status"],
                            "newStatus": values.get("status", before["status"]),
                            "previousVerification": before["is_verified"],
                            "newVerification": values.get("is_verified", before["is_verified"]),
                        },
                        timestamp=now,
                        context=context,
                    )

            span.set_attribute("bulk.affected", affected)
            logger.info(f"Action groupée '{action}' appliquée à {affected} identité(s) par {actor_id}")
            return BulkResult(action=action, affected=affected, subject_ids=ids)
