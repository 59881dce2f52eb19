from opentelemetry.instrumentation import auto_instrumentation

auto_instrumentation.initialize()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers

from app.api.v1 import api as api_v1
from app.api.v1.errors import consent_core_error_handler
from app.core.config import settings
from app.core.database import engine
from app.core.events import lifespan as events_lifespan
from app.core.exceptions import ConsentCoreError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gère le cycle de vie de l'application:
    - Initialise le publisher Redis (livraison des codes de vérification).
    - Libère le pool de connexions à l'arrêt.

    Le schéma de base est géré par Alembic (alembic upgrade head).
    """
    logger.info("=== Application Startup ===")
    async with events_lifespan(app):
        try:
            logger.info("=== Application Startup Complete ===")
            yield
        finally:
            logger.info("=== Application Shutdown ===")
            await engine.dispose()
            logger.info("=== Application Shutdown Complete ===")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.get_api_prefix()}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Exception handlers RFC 9457 Problem Details
config_rfc9457 = RFC9457Config(
    base_url="about:blank",  # Auto-detect request domain
    include_trace_id=True,  # Include OpenTelemetry trace_id
    expose_internal_errors=settings.DEBUG,
    include_error_pages=False,
)
setup_rfc9457_handlers(app, config=config_rfc9457)

# Erreurs métier du coeur -> Problem Details
app.add_exception_handler(ConsentCoreError, consent_core_error_handler)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.ALLOWED_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware Trusted Hosts
if settings.ENVIRONMENT != "development":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.TRUSTED_HOSTS,
    )

app.include_router(api_v1.router, prefix=settings.get_api_prefix("v1"))
