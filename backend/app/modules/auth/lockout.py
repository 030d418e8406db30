"""
Failed-login lockout.

Only failed credential checks count. Reaching the threshold inside the
failure window locks the identifier; while locked, even correct credentials
are refused. A successful login clears the identifier.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from app.core.exceptions import AccountLockedError
from app.core.logging_config import logger
from app.core.stores import StateStore
from app.core.types import Result

FAILURES_KEY = "lockout:failures:{}"
LOCKED_KEY = "lockout:locked:{}"


def ip_identifier(client_ip: str) -> str:
    return f"ip:{client_ip}"


def account_identifier(email: str) -> str:
    return f"account:{email.strip().lower()}"


@dataclass(frozen=True)
class LockoutEntry:
    key: str
    failed_count: int
    locked_until: Optional[float] = None

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and now < self.locked_until


class LockoutTracker:
    def __init__(
        self,
        store: StateStore,
        threshold: int = 5,
        window_seconds: int = 1800,
        lockout_seconds: int = 1800,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds
        self._clock = clock

    async def status(self, identifier: str) -> LockoutEntry:
        failures = await self.store.get(FAILURES_KEY.format(identifier))
        locked_until = await self.store.get(LOCKED_KEY.format(identifier))
        return LockoutEntry(
            key=identifier,
            failed_count=int(failures) if failures else 0,
            locked_until=float(locked_until) if locked_until else None,
        )

    async def check(self, *identifiers: str) -> Result[None]:
        """Fail with AccountLockedError if any identifier is locked"""
        now = self._clock()
        longest = 0.0
        for identifier in identifiers:
            entry = await self.status(identifier)
            if entry.is_locked(now):
                longest = max(longest, entry.locked_until - now)
        if longest > 0:
            return Result.fail(AccountLockedError(retry_after=math.ceil(longest)))
        return Result.ok()

    async def record_failure(self, identifier: str) -> LockoutEntry:
        key = FAILURES_KEY.format(identifier)
        count = await self.store.increment(key)
        if count == 1 or await self.store.ttl(key) is None:
            await self.store.expire(key, self.window_seconds)

        locked_until = None
        if count >= self.threshold:
            current = await self.status(identifier)
            if current.is_locked(self._clock()):
                locked_until = current.locked_until
            else:
                locked_until = self._clock() + self.lockout_seconds
                await self.store.set(LOCKED_KEY.format(identifier), repr(locked_until), ttl=self.lockout_seconds)
                logger.log_security_event(
                    "lockout_started",
                    lockout_key=identifier,
                    failed_count=count,
                    lockout_seconds=self.lockout_seconds,
                )
        return LockoutEntry(identifier, count, locked_until)

    async def reset(self, identifier: str) -> None:
        await self.store.delete(FAILURES_KEY.format(identifier))
        await self.store.delete(LOCKED_KEY.format(identifier))
