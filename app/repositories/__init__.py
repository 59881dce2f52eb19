"""Adaptateurs de stockage (interfaces + implémentation SQLAlchemy)."""

from app.repositories.base import (
    AuditEntryDraft,
    AuditFilter,
    AuditRepository,
    ConsentFilter,
    ConsentRepository,
    IdentityRepository,
    Store,
    VerificationCodeRepository,
)
from app.repositories.sql_store import SqlAlchemyStore

__all__ = [
    "AuditEntryDraft",
    "AuditFilter",
    "AuditRepository",
    "ConsentFilter",
    "ConsentRepository",
    "IdentityRepository",
    "SqlAlchemyStore",
    "Store",
    "VerificationCodeRepository",
]
