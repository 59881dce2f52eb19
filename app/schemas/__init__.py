"""Schemas Pydantic pour validation des donnees."""

from app.schemas.audit import AuditEntryResponse, ChainVerificationResponse
from app.schemas.consent import (
    AccessCheckRequest,
    AccessCheckResponse,
    ConsentGrantRequest,
    ConsentRequestCreate,
    ConsentResponse,
    ConsentRevokeRequest,
)
from app.schemas.identity import (
    BulkActionRequest,
    BulkActionResponse,
    IdentityResponse,
    StatusUpdateRequest,
    VerificationUpdateRequest,
)
from app.schemas.responses import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
    ValidationErrorResponse,
    admin_responses,
    create_responses,
    read_responses,
    update_responses,
)
from app.schemas.verification import EmailChangeConfirm, EmailChangeRequest, EmailChangeResponse

__all__ = [
    "COMMON_RESPONSES",
    "AccessCheckRequest",
    "AccessCheckResponse",
    "AuditEntryResponse",
    "BulkActionRequest",
    "BulkActionResponse",
    "ChainVerificationResponse",
    "ConflictErrorResponse",
    "ConsentGrantRequest",
    "ConsentRequestCreate",
    "ConsentResponse",
    "ConsentRevokeRequest",
    "EmailChangeConfirm",
    "EmailChangeRequest",
    "EmailChangeResponse",
    "IdentityResponse",
    "ProblemDetailResponse",
    "StatusUpdateRequest",
    "ValidationErrorResponse",
    "VerificationUpdateRequest",
    "admin_responses",
    "create_responses",
    "read_responses",
    "update_responses",
]
