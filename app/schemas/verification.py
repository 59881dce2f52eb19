"""Schémas Pydantic pour le changement d'email par code de vérification."""

from pydantic import BaseModel

from app.schemas.utils import Email, VerificationCodeStr


class EmailChangeRequest(BaseModel):
    email: Email


class EmailChangeConfirm(BaseModel):
    email: Email
    code: VerificationCodeStr


class EmailChangeResponse(BaseModel):
    email: str
    verified: bool = True
