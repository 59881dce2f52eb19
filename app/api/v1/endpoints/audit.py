"""Lecture du journal d'audit (rôle admin)."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.api.v1.errors import bad_request
from app.core.config import settings
from app.core.dependencies import get_audit_trail
from app.core.security import User, require_roles
from app.repositories.base import AuditFilter
from app.schemas.audit import AuditEntryResponse, ChainVerificationResponse
from app.services.audit_service import AuditTrail

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[AuditEntryResponse])
async def query_audit(
    subject_id: str | None = Query(None),
    actor_id: str | None = Query(None),
    action: str | None = Query(None),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    limit: int = Query(settings.AUDIT_QUERY_DEFAULT_LIMIT, ge=1),
    audit: AuditTrail = Depends(get_audit_trail),
    current_user: User = Depends(require_roles("admin")),
) -> list[AuditEntryResponse]:
    """
    Entrées d'audit par sujet ou acteur, timestamp décroissant.

    limit est plafonné à AUDIT_QUERY_MAX_LIMIT.
    """
    filters = AuditFilter(
        subject_id=subject_id,
        actor_id=actor_id,
        action=action,
        since=since,
        until=until,
        limit=limit,
    )
    try:
        entries = await audit.query(filters)
    except ValueError as e:
        raise bad_request(str(e), "/api/v1/audit") from e
    return [AuditEntryResponse.model_validate(entry) for entry in entries]


@router.get("/{subject_id}/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(
    subject_id: str,
    audit: AuditTrail = Depends(get_audit_trail),
    current_user: User = Depends(require_roles("admin")),
) -> ChainVerificationResponse:
    """Recalcule la chaîne de sceaux d'un sujet."""
    result = await audit.verify_chain(subject_id)
    if not result.valid:
        logger.warning(f"Chaîne d'audit invalide pour {subject_id} (séquence {result.broken_at})")
    return ChainVerificationResponse(
        subject_id=result.subject_id,
        valid=result.valid,
        checked=result.checked,
        broken_at=result.broken_at,
    )
