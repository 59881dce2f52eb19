import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from keycloak import KeycloakOpenID
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from app.core.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Keycloak client configuration (bearer-only mode - no client_secret needed)
keycloak_openid = KeycloakOpenID(
    server_url=settings.KEYCLOAK_SERVER_URL,
    client_id=settings.KEYCLOAK_CLIENT_ID,
    realm_name=settings.KEYCLOAK_REALM,
)

# auto_error=False: l'absence de token produit un 401 explicite (et non 403)
security_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
    model_config = ConfigDict(extra="allow")

    sub: str  # Keycloak user ID
    email: str | None = None
    preferred_username: str | None = None
    realm_access: dict | None = None
    resource_access: dict | None = None

    @property
    def subject_id(self) -> str:
        """Health ID de l'identité (claim dédié, sinon sub)."""
        health_id = (self.model_extra or {}).get(settings.KEYCLOAK_HEALTH_ID_CLAIM)
        return health_id or self.sub

    @property
    def roles(self) -> list[str]:
        """Rôles realm et client du token."""
        user_roles: list[str] = []
        if self.realm_access and "roles" in self.realm_access:
            user_roles.extend(self.realm_access["roles"])
        if self.resource_access and settings.KEYCLOAK_CLIENT_ID in self.resource_access:
            user_roles.extend(self.resource_access[settings.KEYCLOAK_CLIENT_ID].get("roles", []))
        return user_roles

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role("admin")


async def verify_token(token: str) -> dict:
    """
    Verify JWT token with Keycloak.

    Validates:
    - Token signature and expiration (via decode_token)
    - iss (issuer) - must be from our Keycloak realm
    - azp (authorized party) - must be one of KEYCLOAK_ALLOWED_CLIENTS
    - aud (audience) - must include this service or be 'account'
    """
    with tracer.start_as_current_span("verify_keycloak_token") as span:
        try:
            token_info = keycloak_openid.decode_token(token, validate=True)
        except Exception as e:
            logger.error(f"Token verification failed: {e.__class__.__name__}")
            span.set_attribute("auth.error", True)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

        # L'émetteur varie en développement (localhost vs keycloak)
        iss = token_info.get("iss")
        if not settings.DEBUG:
            expected_issuer = f"{settings.KEYCLOAK_SERVER_URL.rstrip('/')}/realms/{settings.KEYCLOAK_REALM}"
            if iss != expected_issuer:
                logger.error(f"Invalid issuer in token: {iss}. Expected: {expected_issuer}")
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail=f"Token from unauthorized issuer: {iss}",
                    headers={"WWW-Authenticate": "Bearer"},
                )

        azp = token_info.get("azp")
        if azp not in settings.KEYCLOAK_ALLOWED_CLIENTS:
            logger.error(f"Invalid azp in token: {azp}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Token not authorized for this service (invalid azp: {azp})",
                headers={"WWW-Authenticate": "Bearer"},
            )

        aud = token_info.get("aud", [])
        if isinstance(aud, str):
            aud = [aud]
        valid_audiences = {"account", settings.KEYCLOAK_CLIENT_ID}
        if not any(audience in valid_audiences for audience in aud):
            logger.error(f"Invalid audience in token: {aud}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Token not intended for this service (invalid audience: {aud})",
                headers={"WWW-Authenticate": "Bearer"},
            )

        span.set_attribute("auth.user_id", token_info.get("sub") or "")
        span.set_attribute("auth.azp", azp)
        return token_info


async def extract_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)] = None,
) -> str:
    """Extrait le bearer token du header Authorization."""
    if credentials and credentials.credentials:
        return credentials.credentials

    logger.warning("No authentication token found in request")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: Annotated[str, Depends(extract_token)]) -> User:
    """Get current user from verified Keycloak token."""
    token_data = await verify_token(token)
    with tracer.start_as_current_span("get_current_user") as span:
        try:
            user = User(**token_data)
        except ValueError as e:
            logger.error(f"Failed to create user from token data: {e}")
            span.set_attribute("auth.error", True)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
            ) from e
        span.set_attribute("auth.user_id", user.sub)
        return user


def require_roles(*roles: str):
    """
    Dependency factory: l'utilisateur doit posséder au moins un des rôles.

    Examples:
        @router.post("/bulk", dependencies=[Depends(require_roles("admin"))])
        current_user: User = Depends(require_roles("doctor", "patient"))
    """

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        with tracer.start_as_current_span("check_user_roles") as span:
            span.set_attribute("auth.required_roles", ",".join(roles))
            span.set_attribute("auth.user_id", current_user.sub)

            if not any(current_user.has_role(role) for role in roles):
                logger.warning(f"Access denied for user {current_user.sub}. Required roles: {roles}")
                span.set_attribute("auth.access_denied", True)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. Required roles: {', '.join(roles)}",
                )
            return current_user

    return role_checker


def client_ip(request: Request) -> str | None:
    """IP d'origine (premier saut de X-Forwarded-For, sinon pair TCP)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
