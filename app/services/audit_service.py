"""Audit Trail Writer: journal append-only des actions privilégiées.

Chaque entrée est scellée par le stockage avec le sceau précédent du même
sujet. L'écriture rejoint la transaction de l'appelant lorsqu'elle est
ouverte: une mutation et son audit sont validés ou annulés ensemble.
"""

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from opentelemetry import trace

from app.core.config import settings
from app.core.integrity import canonical_json, compute_entry_hash, seals_match
from app.models.audit import AuditEntry
from app.repositories.base import AuditEntryDraft, AuditFilter, Store

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    """Étiquettes d'action enregistrées dans le journal."""

    STATUS_UPDATED = "STATUS_UPDATED"
    VERIFIED = "VERIFIED"
    UNVERIFIED = "UNVERIFIED"
    BULK_SUSPENDED = "BULK status suspended"
    BULK_ACTIVATED = "BULK status active"
    BULK_VERIFIED = "BULK verified"
    BULK_UNVERIFIED = "BULK unverified"
    CONSENT_REQUESTED = "CONSENT_REQUESTED"
    CONSENT_GRANTED = "CONSENT_GRANTED"
    CONSENT_DENIED = "CONSENT_DENIED"
    CONSENT_REVOKED = "CONSENT_REVOKED"
    CONSENT_EXPIRED = "CONSENT_EXPIRED"
    VERIFICATION_CODE_ISSUED = "VERIFICATION_CODE_ISSUED"
    EMAIL_UPDATED = "EMAIL_UPDATED"


@dataclass(frozen=True)
class AuditContext:
    """Contexte réseau de la requête à l'origine de l'action."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ChainVerification:
    """Résultat de la vérification de la chaîne d'un sujet."""

    subject_id: str
    valid: bool
    checked: int
    broken_at: int | None = None


class AuditTrail:
    """Écriture et lecture du journal d'audit."""

    def __init__(self, store: Store):
        self._store = store

    async def record(
        self,
        *,
        subject_id: str,
        actor_id: str,
        action: AuditAction | str,
        details: dict[str, Any],
        timestamp: datetime | None = None,
        context: AuditContext | None = None,
    ) -> AuditEntry:
        """
        Enregistre une entrée d'audit.

        Args:
            subject_id: Identité dont les données sont touchées
            actor_id: Identité ayant réalisé l'action
            action: Étiquette de l'action
            details: Etat avant/après (valeurs JSON)
            timestamp: Horodatage (défaut: maintenant)
            context: IP et user agent de la requête

        Returns:
            AuditEntry persistée et scellée

        Raises:
            ValueError: Si un champ obligatoire est vide
            StorageError: Si la persistance échoue (toujours remontée)
        """
        if not subject_id or not actor_id or not action:
            raise ValueError("subject_id, actor_id and action are required")
        if details is None:
            raise ValueError("details is required")

        action_tag = action.value if isinstance(action, AuditAction) else action
        context = context or AuditContext()
        draft = AuditEntryDraft(
            subject_id=subject_id,
            actor_id=actor_id,
            action=action_tag,
            # Forme JSON figée: ce qui est stocké est exactement ce qui est scellé
            details=json.loads(canonical_json(details)),
            timestamp=timestamp or datetime.now(UTC),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

        with tracer.start_as_current_span("audit_record") as span:
            span.set_attribute("audit.action", action_tag)
            span.set_attribute("audit.subject_id", subject_id)

            async with self._store.transaction():
                entry = await self._store.audit.append(draft)

            span.set_attribute("audit.sequence", entry.sequence or 0)
            logger.info(f"Audit {action_tag}: subject={subject_id} actor={actor_id}")
            return entry

    async def query(self, filters: AuditFilter) -> list[AuditEntry]:
        """
        Lit le journal (timestamp décroissant).

        La limite est plafonnée à AUDIT_QUERY_MAX_LIMIT. Un filtre par sujet
        ou par acteur est obligatoire.
        """
        if filters.subject_id is None and filters.actor_id is None:
            raise ValueError("subject_id or actor_id filter is required")

        limit = max(1, min(filters.limit, settings.AUDIT_QUERY_MAX_LIMIT))
        if limit != filters.limit:
            filters = AuditFilter(
                subject_id=filters.subject_id,
                actor_id=filters.actor_id,
                action=filters.action,
                since=filters.since,
                until=filters.until,
                limit=limit,
            )

        with tracer.start_as_current_span("audit_query") as span:
            span.set_attribute("audit.limit", limit)
            entries = await self._store.audit.query(filters)
            span.set_attribute("audit.results", len(entries))
            return entries

    async def verify_chain(self, subject_id: str) -> ChainVerification:
        """Recalcule chaque sceau du sujet et signale le premier maillon rompu."""
        with tracer.start_as_current_span("audit_verify_chain") as span:
            span.set_attribute("audit.subject_id", subject_id)
            entries = await self._store.audit.chain(subject_id)

            prev_hash: str | None = None
            for checked, entry in enumerate(entries):
                expected = compute_entry_hash(
                    prev_hash=prev_hash,
                    subject_id=entry.subject_id,
                    actor_id=entry.actor_id,
                    action=entry.action,
                    details=entry.details,
                    timestamp=entry.timestamp,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                )
                if entry.prev_hash != prev_hash or not seals_match(expected, entry.entry_hash):
                    logger.warning(f"Chaîne d'audit rompue pour {subject_id} à la séquence {entry.sequence}")
                    span.add_event("Chaîne rompue", {"sequence": entry.sequence})
                    return ChainVerification(
                        subject_id=subject_id, valid=False, checked=checked, broken_at=entry.sequence
                    )
                prev_hash = entry.entry_hash

            span.add_event("Chaîne intègre", {"entries": len(entries)})
            return ChainVerification(subject_id=subject_id, valid=True, checked=len(entries))
