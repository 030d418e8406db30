"""
Wiring for the security components.

One SecurityServices instance is built per application in create_app() and
stored on app.state, so every piece of mutable security state (counters,
lockouts, sessions) is owned by that app rather than by module globals.
"""

from dataclasses import dataclass, field
from typing import List

from fastapi import Request

from app.core.config import Settings
from app.core.rate_limiter import (
    CategoryRateLimiter,
    IPNetwork,
    build_rate_limit_rules,
    build_rate_limit_storage,
    parse_trusted_proxies,
    resolve_client_ip,
)
from app.core.security import dummy_password_hash
from app.core.stores import StateStore, build_state_store
from app.modules.auth.authorization import RoleAuthorizer
from app.modules.auth.identity import IdentityVerifier
from app.modules.auth.lockout import LockoutTracker
from app.modules.auth.sessions import SessionStore
from app.modules.files.gateway import SecureFileGateway


@dataclass
class SecurityServices:
    settings: Settings
    store: StateStore
    rate_limiter: CategoryRateLimiter
    lockout: LockoutTracker
    sessions: SessionStore
    identity: IdentityVerifier
    authorizer: RoleAuthorizer
    files: SecureFileGateway
    trusted_proxies: List[IPNetwork]
    dummy_password_hash: str = field(repr=False)

    def client_ip(self, request: Request) -> str:
        return resolve_client_ip(request, self.trusted_proxies)

    async def close(self) -> None:
        await self.store.close()


def build_security_services(app_settings: Settings, store: StateStore = None) -> SecurityServices:
    store = store or build_state_store(app_settings)
    sessions = SessionStore(
        store,
        max_age_seconds=app_settings.SESSION_MAX_AGE_SECONDS,
        eviction_grace_seconds=app_settings.SESSION_EVICTION_GRACE_SECONDS,
    )
    return SecurityServices(
        settings=app_settings,
        store=store,
        rate_limiter=CategoryRateLimiter(
            build_rate_limit_storage(app_settings),
            build_rate_limit_rules(app_settings),
            enabled=app_settings.RATE_LIMIT_ENABLED,
        ),
        lockout=LockoutTracker(
            store,
            threshold=app_settings.LOCKOUT_THRESHOLD,
            window_seconds=app_settings.LOCKOUT_WINDOW_SECONDS,
            lockout_seconds=app_settings.LOCKOUT_DURATION_SECONDS,
        ),
        sessions=sessions,
        identity=IdentityVerifier(
            sessions,
            jwt_secret_key=app_settings.JWT_SECRET_KEY,
            session_secret=app_settings.SESSION_SECRET,
            jwt_algorithm=app_settings.JWT_ALGORITHM,
        ),
        authorizer=RoleAuthorizer(),
        files=SecureFileGateway(
            root_dir=app_settings.UPLOAD_DIR,
            allowed_extensions=app_settings.ALLOWED_EXTENSIONS,
            allowed_mime_types=app_settings.ALLOWED_MIME_TYPES,
            max_upload_size=app_settings.MAX_UPLOAD_SIZE,
        ),
        trusted_proxies=parse_trusted_proxies(app_settings.TRUSTED_PROXIES),
        dummy_password_hash=dummy_password_hash(app_settings.BCRYPT_ROUNDS),
    )
