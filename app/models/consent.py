"""Modèle des consentements de partage de données patient -> professionnel.

Cycle de vie: REQUESTED -> ACTIVE -> {REVOKED, EXPIRED}.
Les états terminaux sont conservés pour la complétude de l'audit.
"""

import uuid
from datetime import datetime
from typing import Literal, get_args

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

ConsentStatus = Literal["REQUESTED", "ACTIVE", "REVOKED", "EXPIRED"]

ConsentScope = Literal["ALL_RECORDS", "LAST_3_MONTHS", "LAST_6_MONTHS", "LAST_YEAR", "SPECIFIC_TYPES"]

CONSENT_STATUSES: tuple[str, ...] = get_args(ConsentStatus)
CONSENT_SCOPES: tuple[str, ...] = get_args(ConsentScope)


def _new_consent_id() -> str:
    return str(uuid.uuid4())


class ConsentGrant(Base):
    """Autorisation d'accès d'un professionnel au dossier d'un patient."""

    __tablename__ = "consents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_consent_id)
    patient_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="Patient qui accorde le consentement",
    )
    provider_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="Professionnel bénéficiaire",
    )
    requested_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Identité ayant créé la demande (patient ou professionnel)",
    )
    status: Mapped[ConsentStatus] = mapped_column(
        String(16),
        nullable=False,
        default="REQUESTED",
        index=True,
        comment="REQUESTED | ACTIVE | REVOKED | EXPIRED",
    )

    # Portée
    purpose: Mapped[str] = mapped_column(Text, nullable=False, comment="Finalité de l'accès")
    scope: Mapped[ConsentScope] = mapped_column(
        String(32),
        nullable=False,
        default="ALL_RECORDS",
        comment="Périmètre temporel ou typé des données partagées",
    )
    specific_types: Mapped[list[str] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Types de ressources si scope=SPECIFIC_TYPES",
    )
    permissions: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Actions autorisées (read, write...)",
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Cycle de vie
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Fin de validité (expiration passive)",
    )
    request_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Échéance de la demande REQUESTED (sans réponse, elle ne bloque plus)",
    )
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Suivi des accès
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ConsentGrant(id='{self.id}', patient='{self.patient_id}', "
            f"provider='{self.provider_id}', status='{self.status}')>"
        )
