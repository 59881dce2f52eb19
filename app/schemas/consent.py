"""Schémas Pydantic pour le cycle de vie des consentements.

Le statut exposé est le statut effectif: un consentement ACTIVE échu est
renvoyé EXPIRED même si la ligne n'a pas encore été balayée.
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from app.models.consent import ConsentGrant, ConsentScope, ConsentStatus
from app.schemas.utils import HealthId, NonEmptyStr, Reason


class ConsentRequestCreate(BaseModel):
    """Demande de consentement (initiée par le patient ou le professionnel)."""

    patient_id: HealthId | None = Field(
        None, description="Patient concerné (obligatoire si l'appelant est un professionnel)"
    )
    provider_id: HealthId | None = Field(
        None, description="Professionnel bénéficiaire (obligatoire si l'appelant est un patient)"
    )
    purpose: NonEmptyStr = Field(..., max_length=2000, description="Finalité de l'accès")
    scope: ConsentScope = "ALL_RECORDS"
    specific_types: list[str] | None = Field(None, description="Types de ressources si scope=SPECIFIC_TYPES")
    permissions: list[str] | None = Field(None, description="Actions autorisées (défaut: read)")
    message: str | None = Field(None, max_length=2000)
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def check_specific_types(self):
        if self.scope == "SPECIFIC_TYPES" and not self.specific_types:
            raise ValueError("specific_types is required when scope is SPECIFIC_TYPES")
        return self


class ConsentGrantRequest(BaseModel):
    expires_at: datetime | None = Field(None, description="Surcharge de la date d'expiration")


class ConsentRevokeRequest(BaseModel):
    reason: Reason | None = None


class AccessCheckRequest(BaseModel):
    patient_id: HealthId
    action: str = "read"
    scopes: list[str] = Field(default_factory=list)


class AccessCheckResponse(BaseModel):
    patient_id: str
    provider_id: str
    granted: bool


class ConsentResponse(BaseModel):
    id: str
    patient_id: str
    provider_id: str
    requested_by: str
    status: ConsentStatus
    purpose: str
    scope: ConsentScope
    specific_types: list[str] | None = None
    permissions: list[str]
    message: str | None = None
    created_at: datetime | None = None
    expires_at: datetime | None = None
    request_expires_at: datetime | None = None
    granted_at: datetime | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    access_count: int = 0
    last_accessed_at: datetime | None = None

    @classmethod
    def from_consent(cls, consent: ConsentGrant, status: str) -> "ConsentResponse":
        """Construit la réponse avec le statut effectif calculé par le service."""
        return cls(
            id=consent.id,
            patient_id=consent.patient_id,
            provider_id=consent.provider_id,
            requested_by=consent.requested_by,
            status=status,
            purpose=consent.purpose,
            scope=consent.scope,
            specific_types=consent.specific_types,
            permissions=consent.permissions or [],
            message=consent.message,
            created_at=consent.created_at,
            expires_at=consent.expires_at,
            request_expires_at=consent.request_expires_at,
            granted_at=consent.granted_at,
            revoked_at=consent.revoked_at,
            revocation_reason=consent.revocation_reason,
            access_count=consent.access_count or 0,
            last_accessed_at=consent.last_accessed_at,
        )
