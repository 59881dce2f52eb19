"""Modèles des identités (comptes utilisateurs) et de leur profil de santé.

Une identité est créée par l'inscription (hors périmètre), modifiée
uniquement par la machine à états des identités, et jamais supprimée.
"""

from datetime import datetime
from typing import Literal, get_args

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

IdentityRole = Literal["patient", "doctor", "admin"]

# Ensemble plat: toute transition est autorisée (surcharge administrative).
IdentityStatus = Literal["active", "suspended", "pending_verification", "pending_approval"]

IDENTITY_ROLES: tuple[str, ...] = get_args(IdentityRole)
IDENTITY_STATUSES: tuple[str, ...] = get_args(IdentityStatus)


class Identity(Base):
    """Compte utilisateur (patient, médecin ou administrateur)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Health ID opaque et stable",
    )
    role: Mapped[IdentityRole] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="patient | doctor | admin",
    )
    status: Mapped[IdentityStatus] = mapped_column(
        String(32),
        nullable=False,
        default="pending_verification",
        index=True,
        comment="active | suspended | pending_verification | pending_approval",
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Identité vérifiée par un administrateur",
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        comment="Adresse email vérifiée (unique)",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Date de création du compte",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Date de derniere modification",
    )

    def __repr__(self) -> str:
        return f"<Identity(id='{self.id}', role='{self.role}', status='{self.status}')>"


class HealthProfile(Base):
    """Profil de santé rattaché à une identité.

    Porte l'horodatage de vérification professionnelle (médecins), distinct
    du drapeau is_verified de l'identité.
    """

    __tablename__ = "health_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
        index=True,
        comment="Identité propriétaire",
    )
    display_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Nom affiché",
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Date de vérification professionnelle (médecins)",
    )

    def __repr__(self) -> str:
        return f"<HealthProfile(user_id='{self.user_id}', verified_at={self.verified_at})>"
