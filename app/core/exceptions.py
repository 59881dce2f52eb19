"""Exceptions métier du sous-système consentement / audit.

Hiérarchie simple, indépendante de HTTP: le coeur lève ces exceptions et
la couche API (app/api/v1/errors.py) les traduit en RFC 9457 Problem Details.

- Erreurs de l'appelant (pas de retry): NotFound, validation, conflit d'état,
  code invalide, trop de tentatives.
- Erreurs d'infrastructure: StorageError, CodeDeliveryError. Toujours
  remontées, jamais réessayées ni avalées par le coeur.
"""

from typing import Any


class ConsentCoreError(Exception):
    """Exception de base du sous-système."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ---------------------------------------------------------------------------
# Ressources introuvables
# ---------------------------------------------------------------------------


class IdentityNotFoundError(ConsentCoreError):
    """L'identité demandée n'existe pas."""

    def __init__(self, identity_id: str):
        self.identity_id = identity_id
        super().__init__(f"Identity {identity_id} not found", {"identity_id": identity_id})


class ConsentNotFoundError(ConsentCoreError):
    """Le consentement n'existe pas (ou n'appartient pas au patient appelant)."""

    def __init__(self, consent_id: str):
        self.consent_id = consent_id
        super().__init__(f"Consent {consent_id} not found", {"consent_id": consent_id})


# ---------------------------------------------------------------------------
# Erreurs de validation (faute de l'appelant)
# ---------------------------------------------------------------------------


class InvalidStatusError(ConsentCoreError):
    """Statut d'identité hors de l'ensemble autorisé."""

    def __init__(self, status: str, allowed: list[str]):
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Invalid status '{status}'. Must be one of: {', '.join(allowed)}",
            {"status": status, "allowed": allowed},
        )


class BulkValidationError(ConsentCoreError):
    """Requête d'action groupée invalide. Aucune mutation n'a eu lieu."""

    def __init__(self, message: str, missing_ids: list[str] | None = None):
        self.missing_ids = missing_ids or []
        super().__init__(message, {"missing_ids": self.missing_ids})


class ConsentStateError(ConsentCoreError):
    """Transition de consentement interdite depuis l'état courant."""

    def __init__(self, consent_id: str, current_status: str, attempted: str):
        self.consent_id = consent_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} consent {consent_id} in status {current_status}",
            {"consent_id": consent_id, "status": current_status, "transition": attempted},
        )


class ConsentConflictError(ConsentCoreError):
    """Un consentement actif ou une demande en cours existe déjà pour ce couple."""

    def __init__(self, existing_id: str, existing_status: str):
        self.existing_id = existing_id
        self.existing_status = existing_status
        super().__init__(
            f"A consent in status {existing_status} already exists ({existing_id})",
            {"consent_id": existing_id, "status": existing_status},
        )


class EmailAlreadyInUseError(ConsentCoreError):
    """L'adresse email appartient déjà à une autre identité."""

    def __init__(self):
        super().__init__("Email already in use by another account")


# ---------------------------------------------------------------------------
# Codes de vérification
# ---------------------------------------------------------------------------


class InvalidCodeError(ConsentCoreError):
    """Code invalide, expiré ou déjà utilisé."""

    def __init__(self):
        super().__init__("Invalid or expired verification code")


class TooManyAttemptsError(ConsentCoreError):
    """Seuil de tentatives atteint dans la fenêtre glissante."""

    def __init__(self, attempts: int, window_minutes: int):
        self.attempts = attempts
        self.window_minutes = window_minutes
        super().__init__(
            "Too many failed attempts. Please request a new code.",
            {"attempts": attempts, "window_minutes": window_minutes},
        )


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class CodeDeliveryError(ConsentCoreError):
    """Le code n'a pas pu être livré; l'émission est annulée."""

    def __init__(self, channel: str = "email"):
        self.channel = channel
        super().__init__(f"Verification code could not be delivered ({channel})", {"channel": channel})


class StorageError(ConsentCoreError):
    """Échec de persistance. Toujours remonté à l'appelant."""

    def __init__(self, message: str = "Storage operation failed", operation: str | None = None):
        self.operation = operation
        super().__init__(message, {"operation": operation} if operation else None)


__all__ = [
    "BulkValidationError",
    "CodeDeliveryError",
    "ConsentConflictError",
    "ConsentCoreError",
    "ConsentNotFoundError",
    "ConsentStateError",
    "EmailAlreadyInUseError",
    "IdentityNotFoundError",
    "InvalidCodeError",
    "InvalidStatusError",
    "StorageError",
    "TooManyAttemptsError",
]
