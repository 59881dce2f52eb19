"""Endpoints du profil de l'appelant: changement d'email par code."""

import logging

from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_audit_context, get_profile_service
from app.core.security import User, get_current_user
from app.schemas.verification import EmailChangeConfirm, EmailChangeRequest, EmailChangeResponse
from app.services.audit_service import AuditContext
from app.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/email/request", status_code=status.HTTP_202_ACCEPTED)
async def request_email_change(
    payload: EmailChangeRequest,
    service: ProfileService = Depends(get_profile_service),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Envoie un code à 6 chiffres à la nouvelle adresse (valable 10 minutes)."""
    await service.request_email_change(current_user.subject_id, str(payload.email), context=context)
    return {"message": "Verification code sent"}


@router.post("/email/confirm", response_model=EmailChangeResponse)
async def confirm_email_change(
    payload: EmailChangeConfirm,
    service: ProfileService = Depends(get_profile_service),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(get_current_user),
) -> EmailChangeResponse:
    """Vérifie le code et remplace l'email du compte."""
    identity = await service.confirm_email_change(
        current_user.subject_id, str(payload.email), payload.code, context=context
    )
    return EmailChangeResponse(email=identity.email)
