"""Codes de vérification à usage unique (preuve de possession d'une adresse).

Seul le hash du code est stocké. Un code est utilisable au plus une fois
(used_at posé une seule fois), attempts ne fait que croître, et les lignes
ne sont pas supprimées par le service: elles servent au comptage des
tentatives dans la fenêtre glissante.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class VerificationCode(Base):
    """Code émis pour un couple (sujet, valeur cible)."""

    __tablename__ = "verification_codes"
    __table_args__ = (
        Index("ix_verification_codes_subject_target_created", "subject_id", "target_value", "created_at"),
        CheckConstraint("attempts >= 0", name="ck_verification_codes_attempts_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_value: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Valeur dont la possession est prouvée (ex: email)",
    )
    channel: Mapped[str] = mapped_column(String(16), nullable=False, default="email")
    code_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="HMAC-SHA256 du code (jamais le code en clair)",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<VerificationCode(id={self.id}, subject='{self.subject_id}', "
            f"used={self.used_at is not None}, attempts={self.attempts})>"
        )
