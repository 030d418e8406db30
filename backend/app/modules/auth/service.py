"""
Auth Service - register, login, logout, profile and password change.

Every method returns a Result; nothing here raises for an expected failure.
Login failures look the same whether the account exists or not: same
message, a bcrypt check either way, and a random delay.
"""

import asyncio
import random
from datetime import timedelta
from dataclasses import dataclass, field
from typing import List, Optional

from app.core.exceptions import (
    AuthenticationError,
    InactiveAccountError,
    InvalidCredentialsError,
    ValidationError,
    WeakPasswordError,
)
from app.core.logging_config import logger
from app.core.security import (
    create_access_token,
    get_password_hash_async,
    sign_session_id,
    verify_password_async,
)
from app.core.types import Result
from app.models.user import User
from app.modules.auth.container import SecurityServices
from app.modules.auth.lockout import account_identifier, ip_identifier
from app.modules.auth.password_policy import (
    password_strength,
    password_suggestions,
    validate_password,
)
from app.modules.auth.principal import Principal
from app.modules.auth.sessions import Session
from app.schemas.auth import UserRegister
from app.services.user_repository import UserRepository

_delay_random = random.SystemRandom()


@dataclass(frozen=True)
class AuthOutcome:
    user: User
    token: str
    session: Session
    cookie_value: str = field(repr=False)


@dataclass(frozen=True)
class PasswordChangeOutcome:
    strength: int
    suggestions: List[str]
    sessions_ended: int


class AuthService:
    """Auth flows for one request (one database session)"""

    def __init__(self, repository: UserRepository, services: SecurityServices):
        self.repository = repository
        self.services = services
        self.settings = services.settings

    # ==================== HELPERS ====================

    async def _failure_delay(self) -> None:
        delay_ms = _delay_random.uniform(
            self.settings.FAILED_LOGIN_DELAY_MIN_MS,
            self.settings.FAILED_LOGIN_DELAY_MAX_MS,
        )
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    async def _start_session(self, user: User, client_ip: Optional[str]) -> AuthOutcome:
        session = await self.services.sessions.create(
            user_id=str(user.id),
            email=user.email,
            role=user.role.value,
            source_ip=client_ip,
        )
        token = create_access_token(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": user.role.value,
                "sid": session.session_id,
            },
            secret_key=self.settings.JWT_SECRET_KEY,
            algorithm=self.settings.JWT_ALGORITHM,
            expires_delta=timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        )
        return AuthOutcome(
            user=user,
            token=token,
            session=session,
            cookie_value=sign_session_id(session.session_id, self.settings.SESSION_SECRET),
        )

    # ==================== FLOWS ====================

    async def register(self, data: UserRegister, client_ip: Optional[str] = None) -> Result[AuthOutcome]:
        """Create a student account and sign it in"""
        verdict = validate_password(data.password)
        if not verdict.valid:
            logger.log_auth_event("register", False, data.email, reason="weak_password", client_ip=client_ip)
            return Result.fail(WeakPasswordError(verdict.reason))

        if await self.repository.email_exists(data.email):
            logger.log_auth_event("register", False, data.email, reason="email_taken", client_ip=client_ip)
            return Result.fail(ValidationError("An account with this email already exists", field="email"))

        password_hash = await get_password_hash_async(data.password, self.settings.BCRYPT_ROUNDS)
        user = await self.repository.create_user(
            email=data.email,
            password_hash=password_hash,
            full_name=data.full_name,
            specialty=data.specialty,
        )
        logger.log_auth_event("register", True, user.email, user_id=str(user.id), client_ip=client_ip)
        return Result.ok(await self._start_session(user, client_ip))

    async def login(self, email: str, password: str, client_ip: str) -> Result[AuthOutcome]:
        identifiers = (ip_identifier(client_ip), account_identifier(email))

        locked = await self.services.lockout.check(*identifiers)
        if not locked.is_ok:
            logger.log_auth_event("login", False, email, reason="locked_out", client_ip=client_ip)
            return Result.fail(locked.error)

        record = await self.repository.get_credentials(email)
        password_hash = record.password_hash if record else self.services.dummy_password_hash
        password_ok = await verify_password_async(password, password_hash)

        if record is None or not password_ok:
            for identifier in identifiers:
                await self.services.lockout.record_failure(identifier)
            logger.log_auth_event(
                "login", False, email,
                reason="unknown_account" if record is None else "wrong_password",
                client_ip=client_ip,
            )
            await self._failure_delay()
            return Result.fail(InvalidCredentialsError())

        if not record.is_active:
            logger.log_auth_event("login", False, email, reason="account_disabled", client_ip=client_ip)
            return Result.fail(InactiveAccountError())

        for identifier in identifiers:
            await self.services.lockout.reset(identifier)
        await self.repository.record_login(record.user_id)
        user = await self.repository.get_user(record.user_id)

        logger.log_auth_event("login", True, record.email, user_id=record.user_id, client_ip=client_ip)
        return Result.ok(await self._start_session(user, client_ip))

    async def logout(self, principal: Optional[Principal], session_id: Optional[str] = None) -> None:
        """End the caller's session. Safe to call with nothing to end"""
        for sid in {principal.session_id if principal else None, session_id}:
            if sid:
                await self.services.sessions.destroy(sid)
        if principal:
            logger.log_auth_event("logout", True, principal.email, user_id=principal.id)

    async def profile(self, principal: Principal) -> Result[User]:
        user = await self.repository.get_user(principal.id)
        if user is None:
            return Result.fail(AuthenticationError())
        if not user.is_active:
            return Result.fail(InactiveAccountError())
        return Result.ok(user)

    async def change_password(
        self,
        principal: Principal,
        current_password: str,
        new_password: str,
        client_ip: Optional[str] = None,
    ) -> Result[PasswordChangeOutcome]:
        identifier = account_identifier(principal.email)
        locked = await self.services.lockout.check(identifier)
        if not locked.is_ok:
            return Result.fail(locked.error)

        record = await self.repository.get_credentials_by_id(principal.id)
        if record is None:
            return Result.fail(AuthenticationError())

        if not await verify_password_async(current_password, record.password_hash):
            await self.services.lockout.record_failure(identifier)
            logger.log_auth_event(
                "change_password", False, principal.email,
                reason="wrong_current_password", client_ip=client_ip,
            )
            await self._failure_delay()
            return Result.fail(ValidationError("Current password is incorrect", field="current_password"))

        verdict = validate_password(new_password)
        if not verdict.valid:
            return Result.fail(WeakPasswordError(verdict.reason, field="new_password"))
        if new_password == current_password:
            return Result.fail(ValidationError(
                "New password must differ from the current password", field="new_password"
            ))

        password_hash = await get_password_hash_async(new_password, self.settings.BCRYPT_ROUNDS)
        await self.repository.update_password(principal.id, password_hash)
        await self.services.lockout.reset(identifier)
        ended = await self.services.sessions.destroy_user_sessions(principal.id, keep=principal.session_id)

        logger.log_auth_event(
            "change_password", True, principal.email,
            user_id=principal.id, sessions_ended=ended, client_ip=client_ip,
        )
        return Result.ok(PasswordChangeOutcome(
            strength=password_strength(new_password),
            suggestions=password_suggestions(new_password),
            sessions_ended=ended,
        ))
