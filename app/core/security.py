import logging
import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from keycloak import KeycloakOpenID
from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_session
from app.core.exceptions import ForbiddenError
from app.models.staff import Profile

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Keycloak client configuration (bearer-only mode - no client_secret needed)
keycloak_openid = KeycloakOpenID(
    server_url=settings.KEYCLOAK_SERVER_URL,
    client_id=settings.KEYCLOAK_CLIENT_ID,
    realm_name=settings.KEYCLOAK_REALM,
)

# auto_error=False : le token peut aussi venir du query param ou du cookie
security_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
    sub: str  # Keycloak user ID
    email: str | None = None
    preferred_username: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    name: str | None = None

    @property
    def display_name(self) -> str:
        """Nom affichable (nom complet, sinon username, sinon email)."""
        if self.name:
            return self.name
        full_name = " ".join(part for part in (self.given_name, self.family_name) if part)
        return full_name or self.preferred_username or self.email or self.sub


class StaffContext(BaseModel):
    """Contexte de l'appelant : utilisateur Keycloak rattaché à un profil de tenant."""

    user_id: str
    profile_id: uuid.UUID
    tenant_id: uuid.UUID
    role: str
    email: str
    full_name: str

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


async def verify_token(token: str) -> dict:
    """
    Verify JWT token with Keycloak.

    Validates:
    - Token signature and expiration (via decode_token)
    - iss (issuer) - must be from our Keycloak realm
    - azp (authorized party) - must be one of KEYCLOAK_ALLOWED_AZP
    - aud (audience) - must include this service or be 'account'
    """
    with tracer.start_as_current_span("verify_keycloak_token") as span:
        try:
            token_info = keycloak_openid.decode_token(token, validate=True)

            # L'URL de l'issuer varie en développement (localhost vs conteneur)
            iss = token_info.get("iss")
            if not settings.DEBUG:
                expected_issuer = (
                    f"{settings.KEYCLOAK_SERVER_URL.rstrip('/')}/realms/{settings.KEYCLOAK_REALM}"
                )
                if not iss or iss != expected_issuer:
                    logger.error(f"Invalid issuer in token: {iss}. Expected: {expected_issuer}")
                    raise HTTPException(
                        status_code=status.HTTP_401_UNAUTHORIZED,
                        detail=f"Token from unauthorized issuer: {iss}",
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            else:
                logger.debug(f"DEBUG mode: Skipping issuer validation. Token issuer: {iss}")

            allowed_azp = set(settings.KEYCLOAK_ALLOWED_AZP)
            azp = token_info.get("azp")
            if not azp or azp not in allowed_azp:
                logger.error(f"Invalid azp in token: {azp}. Expected one of: {allowed_azp}")
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
                logger.error(
                    f"Invalid audience in token: {aud}. Expected one of: {valid_audiences}"
                )
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail=f"Token not intended for this service (invalid audience: {aud})",
                    headers={"WWW-Authenticate": "Bearer"},
                )

            span.set_attribute("auth.user_id", token_info.get("sub"))
            span.set_attribute("auth.azp", azp)
            logger.debug(f"Token validated - azp: {azp}, user: {token_info.get('sub')}")
            return token_info
        except Exception as e:
            logger.error(f"Token verification failed: {e}")
            span.set_attribute("auth.error", True)
            span.set_attribute("auth.error_detail", str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e


async def extract_token(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)] = None,
) -> str:
    """
    Extrait le JWT de la requête.

    Ordre de priorité :
    1. Header Authorization: Bearer <token>
    2. Query parameter ?token=<token> (liens d'impression de reçus)
    3. Cookie auth_token

    Raises:
        HTTPException 401: Si aucun token n'est trouvé
    """
    if credentials:
        logger.debug("Token extracted from Authorization header")
        return credentials.credentials

    token = request.query_params.get("token")
    if token:
        logger.debug("Token extracted from query parameter")
        return token

    token = request.cookies.get("auth_token")
    if token:
        logger.debug("Token extracted from cookie")
        return token

    logger.warning("No authentication token found in request")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide token via Authorization header, query parameter, or cookie.",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_data(token: Annotated[str, Depends(extract_token)]) -> dict:
    """Extract and verify token from multiple sources."""
    return await verify_token(token)


async def get_current_user(token_data: Annotated[dict, Depends(get_token_data)]) -> User:
    """Get current user from verified Keycloak token."""
    with tracer.start_as_current_span("get_current_user") as span:
        try:
            user = User(**token_data)
            span.set_attribute("auth.user_id", user.sub)
            logger.debug(f"User authenticated: {user.sub}")
            return user
        except Exception as e:
            logger.error(f"Failed to create user from token data: {e}")
            span.set_attribute("auth.error", True)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
            ) from e


async def get_staff_context(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_session)],
) -> StaffContext:
    """
    Résout l'utilisateur authentifié vers son profil de personnel.

    Raises:
        ForbiddenError: Si l'utilisateur n'est rattaché à aucun tenant
    """
    with tracer.start_as_current_span("get_staff_context") as span:
        span.set_attribute("auth.user_id", current_user.sub)

        result = await db.execute(
            select(Profile).where(Profile.keycloak_user_id == current_user.sub)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            logger.warning(f"Aucun profil de personnel pour l'utilisateur {current_user.sub}")
            raise ForbiddenError(detail="No staff profile found for this user")

        span.set_attribute("tenant.id", str(profile.tenant_id))
        span.set_attribute("staff.role", profile.role)

        return StaffContext(
            user_id=current_user.sub,
            profile_id=profile.id,
            tenant_id=profile.tenant_id,
            role=profile.role,
            email=profile.email,
            full_name=profile.full_name,
        )


def require_roles(*roles: str):
    """
    Dependency factory pour le contrôle d'accès par rôle de personnel.

    Args:
        *roles: Rôles autorisés (admin, doctor, pharmacist, cashier)

    Returns:
        Dépendance FastAPI renvoyant le StaffContext de l'appelant

    Examples:
        @router.post("/sales", dependencies=[Depends(require_roles("admin", "pharmacist"))])

        async def endpoint(ctx: StaffContext = Depends(require_roles("admin"))): ...
    """

    async def role_checker(
        ctx: Annotated[StaffContext, Depends(get_staff_context)],
    ) -> StaffContext:
        with tracer.start_as_current_span("check_staff_roles") as span:
            span.set_attribute("auth.required_roles", ",".join(roles))
            span.set_attribute("auth.user_role", ctx.role)

            if not ctx.has_role(*roles):
                logger.warning(
                    f"Access denied for profile {ctx.profile_id} (role={ctx.role}). "
                    f"Required roles: {roles}"
                )
                span.set_attribute("auth.access_denied", True)
                raise ForbiddenError(detail=f"Access denied. Required roles: {', '.join(roles)}")

            return ctx

    return role_checker
