"""Schémas Pydantic pour l'administration des identités."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.identity import IdentityRole, IdentityStatus
from app.schemas.utils import HealthId, Reason

BulkActionName = Literal["suspend", "activate", "verify", "unverify"]


class IdentityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    role: IdentityRole
    status: IdentityStatus
    is_verified: bool
    email: str | None = None
    updated_at: datetime | None = None


class StatusUpdateRequest(BaseModel):
    """Changement de statut (tout statut vers tout statut)."""

    # str et non Literal: un statut inconnu est rejeté par le service (InvalidStatusError)
    status: str = Field(..., description="active | suspended | pending_verification | pending_approval")
    reason: Reason | None = None


class VerificationUpdateRequest(BaseModel):
    verified: bool = Field(..., description="Nouvel état de vérification")
    notes: Reason | None = None


class BulkActionRequest(BaseModel):
    """Action groupée sur plusieurs identités."""

    action: str = Field(..., description="suspend | activate | verify | unverify")
    user_ids: list[HealthId] = Field(..., description="Identités ciblées (dédoublonnées)")
    reason: Reason | None = None


class BulkActionResponse(BaseModel):
    action: BulkActionName
    affected: int = Field(..., ge=0, description="Nombre d'identités modifiées")
    user_ids: list[str]
