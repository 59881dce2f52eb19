"""
Schémas de réponses OpenAPI pour RFC 9457 Problem Details.

Réexporte les schémas de fastapi-errors-rfc9457 utilisés par les routeurs.
"""

from fastapi_errors_rfc9457 import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
    ValidationErrorResponse,
    admin_responses,
    create_responses,
    read_responses,
    update_responses,
)

__all__ = [
    "COMMON_RESPONSES",
    "ConflictErrorResponse",
    "ProblemDetailResponse",
    "ValidationErrorResponse",
    "admin_responses",
    "create_responses",
    "read_responses",
    "update_responses",
]
