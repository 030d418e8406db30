"""
Resolve who is making a request.

Order: bearer token first, then the session cookie when the route allows
it. A route in BEARER mode never falls back to the cookie. Invalid tokens
are logged without their contents.
"""

from typing import Any, Dict, Optional

from app.core.exceptions import (
    AuthenticationError,
    InvalidTokenError,
    PortalError,
    SessionExpiredError,
)
from app.core.logging_config import logger
from app.core.security import decode_access_token, unsign_session_id
from app.core.types import Result
from app.models.user import UserRole
from app.modules.auth.principal import AuthMode, Principal
from app.modules.auth.sessions import SessionStatus, SessionStore


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header, if any"""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def _role_from_claim(value: str) -> Optional[UserRole]:
    try:
        return UserRole(value)
    except ValueError:
        return None


class IdentityVerifier:
    def __init__(
        self,
        sessions: SessionStore,
        jwt_secret_key: str,
        session_secret: str,
        jwt_algorithm: str = "HS256",
    ):
        self.sessions = sessions
        self.jwt_secret_key = jwt_secret_key
        self.session_secret = session_secret
        self.jwt_algorithm = jwt_algorithm

    async def resolve(
        self,
        authorization: Optional[str],
        session_cookie: Optional[str],
        mode: AuthMode = AuthMode.BEARER_OR_SESSION,
        client_ip: Optional[str] = None,
        path: Optional[str] = None,
    ) -> Result[Principal]:
        token_error: Optional[PortalError] = None

        token = extract_bearer_token(authorization) if mode.accepts_bearer else None
        if token:
            result = await self.verify_token(token)
            if result.is_ok:
                return result
            token_error = result.error
            logger.log_security_event(
                "invalid_token",
                client_ip=client_ip,
                path=path,
                reason=token_error.code,
            )
            if not mode.accepts_session:
                return result
        elif mode is AuthMode.BEARER:
            return Result.fail(AuthenticationError())

        session_error: Optional[PortalError] = None
        if mode.accepts_session and session_cookie:
            result = await self.verify_session_cookie(session_cookie, client_ip=client_ip, path=path)
            if result.is_ok:
                return result
            session_error = result.error

        return Result.fail(token_error or session_error or AuthenticationError())

    async def verify_token(self, token: str) -> Result[Principal]:
        decoded = decode_access_token(token, self.jwt_secret_key, self.jwt_algorithm)
        if not decoded.is_ok:
            return Result.fail(decoded.error)
        claims: Dict[str, Any] = decoded.value

        role = _role_from_claim(claims["role"])
        if role is None:
            return Result.fail(InvalidTokenError())

        session_id = claims.get("sid")
        if session_id:
            # Tokens issued with a session die with it (logout, expiry)
            validation = await self.sessions.validate(session_id)
            if not validation.is_valid or validation.session.user_id != claims["sub"]:
                return Result.fail(SessionExpiredError())

        return Result.ok(Principal(
            id=claims["sub"],
            email=claims["email"],
            role=role,
            session_id=session_id,
            via=AuthMode.BEARER,
        ))

    async def verify_session_cookie(
        self,
        cookie_value: str,
        client_ip: Optional[str] = None,
        path: Optional[str] = None,
    ) -> Result[Principal]:
        session_id = unsign_session_id(cookie_value, self.session_secret)
        if session_id is None:
            logger.log_security_event("tampered_session_cookie", client_ip=client_ip, path=path)
            return Result.fail(AuthenticationError())

        validation = await self.sessions.validate(session_id)
        if validation.status is SessionStatus.EXPIRED:
            return Result.fail(SessionExpiredError())
        if not validation.is_valid:
            return Result.fail(AuthenticationError())

        session = validation.session
        role = _role_from_claim(session.role)
        if role is None:
            await self.sessions.destroy(session_id)
            return Result.fail(AuthenticationError())

        return Result.ok(Principal(
            id=session.user_id,
            email=session.email,
            role=role,
            session_id=session.session_id,
            via=AuthMode.SESSION,
        ))
