"""Endpoints administrateur: statut, vérification et actions groupées sur les identités.

Réservés au rôle 'admin'. L'administrateur authentifié est l'acteur
enregistré dans chaque entrée d'audit.
"""

import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import (
    get_audit_context,
    get_bulk_coordinator,
    get_identity_machine,
)
from app.core.security import User, require_roles
from app.schemas.identity import (
    BulkActionRequest,
    BulkActionResponse,
    IdentityResponse,
    StatusUpdateRequest,
    VerificationUpdateRequest,
)
from app.services.audit_service import AuditContext
from app.services.bulk_service import BulkActionCoordinator
from app.services.identity_service import IdentityStatusMachine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{user_id}", response_model=IdentityResponse)
async def get_user(
    user_id: str,
    machine: IdentityStatusMachine = Depends(get_identity_machine),
    current_user: User = Depends(require_roles("admin")),
) -> IdentityResponse:
    """Retourne une identité."""
    identity = await machine.get_identity(user_id)
    return IdentityResponse.model_validate(identity)


@router.patch("/{user_id}/status", response_model=IdentityResponse)
async def update_user_status(
    user_id: str,
    payload: StatusUpdateRequest,
    machine: IdentityStatusMachine = Depends(get_identity_machine),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("admin")),
) -> IdentityResponse:
    """
    Change le statut d'une identité.

    Toute transition entre les quatre statuts est permise.
    """
    identity = await machine.set_status(
        user_id,
        payload.status,
        actor_id=current_user.subject_id,
        reason=payload.reason,
        context=context,
    )
    return IdentityResponse.model_validate(identity)


@router.patch("/{user_id}/verification", response_model=IdentityResponse)
async def update_user_verification(
    user_id: str,
    payload: VerificationUpdateRequest,
    machine: IdentityStatusMachine = Depends(get_identity_machine),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("admin")),
) -> IdentityResponse:
    """Vérifie (ou dé-vérifie) une identité."""
    identity = await machine.set_verified(
        user_id,
        payload.verified,
        actor_id=current_user.subject_id,
        notes=payload.notes,
        context=context,
    )
    return IdentityResponse.model_validate(identity)


@router.post("/bulk", response_model=BulkActionResponse)
async def bulk_user_action(
    payload: BulkActionRequest,
    coordinator: BulkActionCoordinator = Depends(get_bulk_coordinator),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("admin")),
) -> BulkActionResponse:
    """
    Applique une action (suspend, activate, verify, unverify) à plusieurs identités.

    Tout ou rien: un identifiant inconnu fait échouer l'appel sans mutation.
    """
    result = await coordinator.apply_bulk(
        payload.action,
        payload.user_ids,
        actor_id=current_user.subject_id,
        reason=payload.reason,
        context=context,
    )
    return BulkActionResponse(action=result.action, affected=result.affected, user_ids=result.subject_ids)
