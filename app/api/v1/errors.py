"""Traduction des exceptions métier en RFC 9457 Problem Details.

Le coeur lève des exceptions indépendantes de HTTP (app/core/exceptions.py);
ce module choisit le statut et le problème renvoyé au client.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi_errors_rfc9457 import (
    ConflictError,
    InternalServerError,
    NotFoundError,
    RFC9457Exception,
    ServiceUnavailableError,
)

from app.core.exceptions import (
    BulkValidationError,
    CodeDeliveryError,
    ConsentConflictError,
    ConsentCoreError,
    ConsentNotFoundError,
    ConsentStateError,
    EmailAlreadyInUseError,
    IdentityNotFoundError,
    InvalidCodeError,
    InvalidStatusError,
    StorageError,
    TooManyAttemptsError,
)

logger = logging.getLogger(__name__)

ERROR_TYPE_BASE = "https://curanet.app/errors"


def bad_request(detail: str, instance: str | None = None, title: str = "Bad Request") -> RFC9457Exception:
    return RFC9457Exception(
        status_code=400,
        title=title,
        detail=detail,
        type=f"{ERROR_TYPE_BASE}/bad-request",
        instance=instance,
    )


def to_problem(exc: ConsentCoreError, instance: str | None = None) -> RFC9457Exception:
    """Construit l'exception RFC 9457 correspondant à une erreur métier."""
    if isinstance(exc, IdentityNotFoundError):
        return NotFoundError(
            detail=exc.message,
            resource_type="identity",
            resource_id=exc.identity_id,
            instance=instance,
        )
    if isinstance(exc, ConsentNotFoundError):
        return NotFoundError(
            detail=exc.message,
            resource_type="consent",
            resource_id=exc.consent_id,
            instance=instance,
        )
    if isinstance(exc, InvalidStatusError):
        return bad_request(exc.message, instance, title="Invalid Status")
    if isinstance(exc, BulkValidationError):
        return bad_request(exc.message, instance, title="Invalid Bulk Action")
    if isinstance(exc, InvalidCodeError):
        return bad_request(exc.message, instance, title="Invalid Verification Code")
    if isinstance(exc, (ConsentStateError, ConsentConflictError, EmailAlreadyInUseError)):
        return ConflictError(detail=exc.message, instance=instance)
    if isinstance(exc, TooManyAttemptsError):
        return RFC9457Exception(
            status_code=429,
            title="Too Many Attempts",
            detail=exc.message,
            type=f"{ERROR_TYPE_BASE}/too-many-attempts",
            instance=instance,
        )
    if isinstance(exc, CodeDeliveryError):
        return RFC9457Exception(
            status_code=502,
            title="Code Delivery Failed",
            detail=exc.message,
            type=f"{ERROR_TYPE_BASE}/code-delivery-failed",
            instance=instance,
        )
    if isinstance(exc, StorageError):
        # Le détail SQL reste dans les logs
        return ServiceUnavailableError(detail="Storage is temporarily unavailable", instance=instance)
    return InternalServerError(detail="Unexpected consent subsystem error", instance=instance)


async def consent_core_error_handler(request: Request, exc: ConsentCoreError) -> JSONResponse:
    """Exception handler FastAPI pour ConsentCoreError et ses sous-classes."""
    problem = to_problem(exc, instance=request.url.path)
    if problem.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} sur {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.__class__.__name__} sur {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=problem.status_code,
        content=problem.to_dict(),
        media_type="application/problem+json",
    )
