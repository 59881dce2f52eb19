from fastapi import APIRouter

from app.api.v1 import health
from app.api.v1.endpoints import admin_users, audit, consents, profile
from app.schemas import COMMON_RESPONSES

# Router principal avec réponses RFC 9457 par défaut
router = APIRouter(responses=COMMON_RESPONSES)

router.include_router(health.router, tags=["health"])
router.include_router(consents.router, prefix="/consents", tags=["consents"])
router.include_router(profile.router, prefix="/me", tags=["profile"])
router.include_router(admin_users.router, prefix="/admin/users", tags=["admin-users"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
