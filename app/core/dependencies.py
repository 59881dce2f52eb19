"""Dependances FastAPI pour l'injection du stockage et des services.

Chaque requête reçoit sa propre session, enveloppée dans un SqlAlchemyStore
transmis explicitement aux services du coeur.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import client_ip
from app.repositories import SqlAlchemyStore, Store
from app.services.audit_service import AuditContext, AuditTrail
from app.services.bulk_service import BulkActionCoordinator
from app.services.consent_service import ConsentLifecycleManager
from app.services.identity_service import IdentityStatusMachine
from app.services.profile_service import ProfileService
from app.services.verification_service import CodeDelivery, CodeVerificationEngine, EventBusCodeDelivery


def get_store(session: AsyncSession = Depends(get_session)) -> Store:
    return SqlAlchemyStore(session)


def get_code_delivery() -> CodeDelivery:
    return EventBusCodeDelivery()


def get_audit_context(request: Request) -> AuditContext:
    """IP et user agent de la requête, portés par chaque entrée d'audit."""
    user_agent = request.headers.get("user-agent")
    return AuditContext(ip_address=client_ip(request), user_agent=user_agent[:500] if user_agent else None)


def get_audit_trail(store: Store = Depends(get_store)) -> AuditTrail:
    return AuditTrail(store)


def get_identity_machine(
    store: Store = Depends(get_store),
    audit: AuditTrail = Depends(get_audit_trail),
) -> IdentityStatusMachine:
    return IdentityStatusMachine(store, audit)


def get_consent_manager(
    store: Store = Depends(get_store),
    audit: AuditTrail = Depends(get_audit_trail),
) -> ConsentLifecycleManager:
    return ConsentLifecycleManager(store, audit)


def get_bulk_coordinator(
    store: Store = Depends(get_store),
    audit: AuditTrail = Depends(get_audit_trail),
) -> BulkActionCoordinator:
    return BulkActionCoordinator(store, audit)


def get_verification_engine(
    store: Store = Depends(get_store),
    audit: AuditTrail = Depends(get_audit_trail),
    delivery: CodeDelivery = Depends(get_code_delivery),
) -> CodeVerificationEngine:
    return CodeVerificationEngine(store, delivery, audit=audit)


def get_profile_service(
    store: Store = Depends(get_store),
    audit: AuditTrail = Depends(get_audit_trail),
    codes: CodeVerificationEngine = Depends(get_verification_engine),
) -> ProfileService:
    return ProfileService(store, audit, codes)
