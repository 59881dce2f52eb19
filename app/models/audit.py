"""Journal d'audit append-only, scellé par chaîne HMAC par sujet.

Une entrée n'est jamais modifiée ni supprimée: le mapper refuse tout
UPDATE ou DELETE sur AuditEntry au moment du flush.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class AuditEntry(Base):
    """Fait immuable: une action privilégiée sur les données d'un sujet."""

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_entries_subject_timestamp", "subject_id", "timestamp"),
        Index("ix_audit_entries_actor_timestamp", "actor_id", "timestamp"),
    )

    sequence: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
        comment="Ordre d'écriture global (monotone)",
    )
    subject_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Identité dont les données ou le compte sont touchés",
    )
    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Identité ayant réalisé l'action (peut égaler subject_id)",
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Etat avant/après et contexte de l'action",
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Chaîne d'intégrité
    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Sceau de l'entrée précédente du même sujet",
    )
    entry_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="HMAC-SHA256(prev_hash + champs canoniques)",
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEntry(seq={self.sequence}, action='{self.action}', "
            f"subject='{self.subject_id}', actor='{self.actor_id}')>"
        )

    def to_dict(self) -> dict[str, Any]:
        """Représentation sérialisable (API de lecture)."""
        return {
            "sequence": self.sequence,
            "subject_id": self.subject_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "details": self.details,
            "timestamp": self.timestamp,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "entry_hash": self.entry_hash,
        }


class AuditChainHead(Base):
    """Pointeur vers le dernier sceau de chaque sujet.

    Verrouillé (SELECT ... FOR UPDATE) pendant un ajout: les écritures
    concurrentes sur un même sujet sont sérialisées par la base.
    """

    __tablename__ = "audit_chain_heads"

    subject_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_sequence: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


@event.listens_for(AuditEntry, "before_update")
def _forbid_audit_update(mapper, connection, target):
    raise ValueError(f"Audit entries are immutable (sequence={target.sequence})")


@event.listens_for(AuditEntry, "before_delete")
def _forbid_audit_delete(mapper, connection, target):
    raise ValueError(f"Audit entries cannot be deleted (sequence={target.sequence})")
