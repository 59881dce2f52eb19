"""Endpoints du cycle de vie des consentements.

- Demande: patient ou médecin (l'appelant est l'une des deux parties)
- Accord, refus, révocation: patient titulaire uniquement
- Vérification d'accès: médecin bénéficiaire
- Balayage des expirations: admin
"""

import logging

from fastapi import APIRouter, Depends, Query

from app.api.v1.errors import bad_request
from app.core.dependencies import get_audit_context, get_consent_manager
from app.core.exceptions import ConsentNotFoundError
from app.core.security import User, require_roles
from app.models.consent import CONSENT_STATUSES
from app.repositories.base import ConsentFilter
from app.schemas.consent import (
    AccessCheckRequest,
    AccessCheckResponse,
    ConsentGrantRequest,
    ConsentRequestCreate,
    ConsentResponse,
    ConsentRevokeRequest,
)
from app.schemas.responses import create_responses
from app.services.audit_service import AuditContext
from app.services.consent_service import ConsentLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _response(manager: ConsentLifecycleManager, consent) -> ConsentResponse:
    return ConsentResponse.from_consent(consent, manager.effective_status(consent))


@router.post("", response_model=ConsentResponse, status_code=201, responses={**create_responses()})
async def request_consent(
    payload: ConsentRequestCreate,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("patient", "doctor")),
) -> ConsentResponse:
    """
    Crée une demande de consentement (statut REQUESTED).

    Un patient désigne le professionnel (provider_id); un médecin désigne
    le patient (patient_id).
    """
    if current_user.has_role("patient"):
        patient_id, provider_id = current_user.subject_id, payload.provider_id
    else:
        patient_id, provider_id = payload.patient_id, current_user.subject_id
    if not patient_id or not provider_id:
        raise bad_request("patient_id and provider_id must both be resolved", "/api/v1/consents")

    try:
        consent = await manager.request_consent(
            patient_id,
            provider_id,
            requested_by=current_user.subject_id,
            purpose=payload.purpose,
            scope=payload.scope,
            specific_types=payload.specific_types,
            permissions=payload.permissions,
            message=payload.message,
            expires_at=payload.expires_at,
            context=context,
        )
    except ValueError as e:
        raise bad_request(str(e), "/api/v1/consents") from e
    return _response(manager, consent)


@router.get("", response_model=list[ConsentResponse])
async def list_consents(
    status: str | None = Query(None, description="REQUESTED | ACTIVE | REVOKED | EXPIRED"),
    active_only: bool = Query(False, description="Seulement les consentements effectifs"),
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    current_user: User = Depends(require_roles("patient", "doctor")),
) -> list[ConsentResponse]:
    """Liste les consentements dont l'appelant est partie (patient ou bénéficiaire)."""
    if status is not None and status not in CONSENT_STATUSES:
        raise bad_request(f"Invalid status '{status}'", "/api/v1/consents")

    if current_user.has_role("patient"):
        filters = ConsentFilter(
            patient_id=current_user.subject_id,
            statuses=(status,) if status else (),
            active_only=active_only,
        )
    else:
        filters = ConsentFilter(
            provider_id=current_user.subject_id,
            statuses=(status,) if status else (),
            active_only=active_only,
        )
    consents = await manager.list_consents(filters)
    return [_response(manager, consent) for consent in consents]


@router.post("/access-check", response_model=AccessCheckResponse)
async def check_access(
    payload: AccessCheckRequest,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    current_user: User = Depends(require_roles("doctor")),
) -> AccessCheckResponse:
    """Indique si le médecin appelant peut accéder aux données du patient."""
    granted = await manager.authorize_access(
        payload.patient_id,
        current_user.subject_id,
        action=payload.action,
        scopes=payload.scopes,
    )
    return AccessCheckResponse(patient_id=payload.patient_id, provider_id=current_user.subject_id, granted=granted)


@router.post("/expire")
async def expire_lapsed_consents(
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    current_user: User = Depends(require_roles("admin")),
) -> dict:
    """Persiste EXPIRED pour les consentements actifs échus."""
    expired = await manager.expire_lapsed()
    return {"expired": expired}


@router.get("/{consent_id}", response_model=ConsentResponse)
async def get_consent(
    consent_id: str,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    current_user: User = Depends(require_roles("patient", "doctor", "admin")),
) -> ConsentResponse:
    """Retourne un consentement visible par l'appelant."""
    consent = await manager.get_consent(consent_id)
    if not current_user.is_admin and current_user.subject_id not in (consent.patient_id, consent.provider_id):
        raise ConsentNotFoundError(consent_id)
    return _response(manager, consent)


@router.post("/{consent_id}/grant", response_model=ConsentResponse)
async def grant_consent(
    consent_id: str,
    payload: ConsentGrantRequest | None = None,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("patient")),
) -> ConsentResponse:
    """Le patient approuve une demande (REQUESTED -> ACTIVE)."""
    try:
        consent = await manager.grant_consent(
            consent_id,
            current_user.subject_id,
            expires_at=payload.expires_at if payload else None,
            context=context,
        )
    except ValueError as e:
        raise bad_request(str(e), f"/api/v1/consents/{consent_id}/grant") from e
    return _response(manager, consent)


@router.post("/{consent_id}/deny", response_model=ConsentResponse)
async def deny_consent(
    consent_id: str,
    payload: ConsentRevokeRequest | None = None,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("patient")),
) -> ConsentResponse:
    """Le patient refuse une demande (REQUESTED -> REVOKED)."""
    consent = await manager.deny_consent(
        consent_id,
        current_user.subject_id,
        reason=payload.reason if payload else None,
        context=context,
    )
    return _response(manager, consent)


@router.post("/{consent_id}/revoke", response_model=ConsentResponse)
async def revoke_consent(
    consent_id: str,
    payload: ConsentRevokeRequest | None = None,
    manager: ConsentLifecycleManager = Depends(get_consent_manager),
    context: AuditContext = Depends(get_audit_context),
    current_user: User = Depends(require_roles("patient")),
) -> ConsentResponse:
    """Le patient retire un consentement actif (ACTIVE -> REVOKED)."""
    consent = await manager.revoke_consent(
        consent_id,
        current_user.subject_id,
        reason=payload.reason if payload else None,
        context=context,
    )
    return _response(manager, consent)
