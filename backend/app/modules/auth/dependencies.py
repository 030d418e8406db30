"""
FastAPI dependencies for the request pipeline:

    rate_limit(category) -> authenticated(mode) -> csrf_guard -> require_roles(*roles, mode=...)

Each route declares its rate-limit category and auth mode explicitly.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.database import get_db
from app.core.exceptions import AuthorizationError
from app.core.logging_config import logger, set_user_id
from app.core.rate_limiter import RateLimitCategory, RateLimitDecision
from app.core.security import unsign_session_id, verify_csrf_token
from app.core.types import Result
from app.models.user import UserRole
from app.modules.auth.container import SecurityServices
from app.modules.auth.principal import AuthMode, Principal
from app.modules.auth.service import AuthService
from app.services.user_repository import UserRepository

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
CSRF_HEADER = "X-CSRF-Token"


def get_security_services(request: Request) -> SecurityServices:
    return request.app.state.security


def get_app_settings(request: Request) -> Settings:
    return request.app.state.security.settings


def get_client_ip(request: Request) -> str:
    return get_security_services(request).client_ip(request)


async def get_auth_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthService:
    return AuthService(UserRepository(db), get_security_services(request))


def rate_limit(category: RateLimitCategory):
    """Count the request against a category; 429 once the window is full"""

    async def dependency(request: Request) -> RateLimitDecision:
        services = get_security_services(request)
        result = await services.rate_limiter.check(
            category,
            services.client_ip(request),
            path=request.url.path,
        )
        return result.unwrap()

    return dependency


def session_id_from_cookie(request: Request) -> Optional[str]:
    services = get_security_services(request)
    cookie = request.cookies.get(services.settings.SESSION_COOKIE_NAME)
    if not cookie:
        return None
    return unsign_session_id(cookie, services.settings.SESSION_SECRET)


async def _resolve(request: Request, mode: AuthMode):
    services = get_security_services(request)
    return await services.identity.resolve(
        authorization=request.headers.get("Authorization"),
        session_cookie=request.cookies.get(services.settings.SESSION_COOKIE_NAME),
        mode=mode,
        client_ip=services.client_ip(request),
        path=request.url.path,
    )


def csrf_guard(request: Request, principal: Principal) -> Result[Principal]:
    """
    Cookie-authenticated writes must echo the session's CSRF token.

    Bearer callers are exempt: another site cannot make a browser attach an
    Authorization header. Clients read the token from GET /auth/csrf-token.
    """
    if principal.via is not AuthMode.SESSION or request.method in SAFE_METHODS:
        return Result.ok(principal)

    services = get_security_services(request)
    token = request.headers.get(CSRF_HEADER)
    if verify_csrf_token(token, principal.session_id, services.settings.SESSION_SECRET):
        return Result.ok(principal)

    logger.log_security_event(
        "csrf_rejected",
        client_ip=services.client_ip(request),
        path=request.url.path,
        principal_id=principal.id,
        csrf_token_present=bool(token),
    )
    return Result.fail(AuthorizationError("CSRF token missing or invalid"))


def authenticated(mode: AuthMode = AuthMode.BEARER_OR_SESSION):
    """Require an identity; 401 otherwise"""

    async def dependency(request: Request) -> Principal:
        principal = (await _resolve(request, mode)).unwrap()
        csrf_guard(request, principal).unwrap()
        set_user_id(principal.id)
        request.state.principal = principal
        return principal

    return dependency


def optional_principal(mode: AuthMode = AuthMode.BEARER_OR_SESSION):
    """Identity if one resolves, None otherwise. Only a cookie write without its CSRF token fails"""

    async def dependency(request: Request) -> Optional[Principal]:
        result = await _resolve(request, mode)
        if not result.is_ok:
            return None
        # A forged cookie write is refused, not downgraded to anonymous
        csrf_guard(request, result.value).unwrap()
        set_user_id(result.value.id)
        return result.value

    return dependency


def require_roles(*roles: UserRole, mode: AuthMode = AuthMode.BEARER_OR_SESSION):
    """Require an identity whose role is any of `roles`; 401 or 403 otherwise"""

    async def dependency(
        request: Request,
        principal: Principal = Depends(authenticated(mode)),
    ) -> Principal:
        services = get_security_services(request)
        return services.authorizer.authorize(principal, roles, path=request.url.path).unwrap()

    return dependency


ANY_ROLE = (UserRole.STUDENT, UserRole.TEACHER, UserRole.ADMIN)
STAFF_ROLES = (UserRole.TEACHER, UserRole.ADMIN)
