"""Schémas Pydantic pour la lecture du journal d'audit."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    subject_id: str
    actor_id: str
    action: str
    details: dict[str, Any]
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    entry_hash: str


class ChainVerificationResponse(BaseModel):
    subject_id: str
    valid: bool
    checked: int
    broken_at: int | None = None
