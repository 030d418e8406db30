"""
Server-side sessions.

A session expires a fixed time after creation. Activity is recorded but does
not extend the lifetime. Expiry is checked when the session is read; the
store TTL (max age plus a grace period) only bounds memory.
"""

import enum
import json
import time
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

from app.core.logging_config import logger
from app.core.security import generate_session_id
from app.core.stores import StateStore

SESSION_KEY = "session:{}"
USER_SESSIONS_KEY = "user_sessions:{}"


class SessionStatus(str, enum.Enum):
    VALID = "valid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass
class Session:
    session_id: str
    user_id: str
    email: str
    role: str
    created_at: float
    last_activity: float
    source_ip: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        return cls(**json.loads(raw))


@dataclass(frozen=True)
class SessionValidation:
    status: SessionStatus
    session: Optional[Session] = None

    @property
    def is_valid(self) -> bool:
        return self.status is SessionStatus.VALID


class SessionStore:
    """Create, validate, touch and destroy sessions kept in a StateStore"""

    def __init__(
        self,
        store: StateStore,
        max_age_seconds: int = 86400,
        eviction_grace_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_age_seconds = max_age_seconds
        self.eviction_grace_seconds = eviction_grace_seconds
        self._clock = clock

    @property
    def _store_ttl(self) -> int:
        return self.max_age_seconds + self.eviction_grace_seconds

    async def create(
        self,
        user_id: str,
        email: str,
        role: str,
        source_ip: Optional[str] = None,
    ) -> Session:
        now = self._clock()
        session = Session(
            session_id=generate_session_id(),
            user_id=str(user_id),
            email=email,
            role=role,
            created_at=now,
            last_activity=now,
            source_ip=source_ip,
        )
        await self.store.set(SESSION_KEY.format(session.session_id), session.to_json(), ttl=self._store_ttl)
        await self._index_add(session.user_id, session.session_id)
        logger.debug(f"Session created for user {session.user_id}")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        raw = await self.store.get(SESSION_KEY.format(session_id))
        if raw is None:
            return None
        return Session.from_json(raw)

    async def validate(self, session_id: str) -> SessionValidation:
        """Look up a session, evicting it if it outlived its max age"""
        if not session_id:
            return SessionValidation(SessionStatus.NOT_FOUND)
        session = await self.get(session_id)
        if session is None:
            return SessionValidation(SessionStatus.NOT_FOUND)

        if self._clock() - session.created_at > self.max_age_seconds:
            await self.destroy(session_id)
            logger.info(f"Session expired for user {session.user_id}")
            return SessionValidation(SessionStatus.EXPIRED, session)

        await self.touch(session)
        return SessionValidation(SessionStatus.VALID, session)

    async def touch(self, session: Session) -> None:
        """Record activity. Does not move the expiry"""
        session.last_activity = self._clock()
        remaining = session.created_at + self._store_ttl - session.last_activity
        if remaining <= 0:
            return
        await self.store.set(SESSION_KEY.format(session.session_id), session.to_json(), ttl=remaining)

    async def destroy(self, session_id: str) -> None:
        """Remove a session. Unknown or already destroyed ids are ignored"""
        if not session_id:
            return
        session = await self.get(session_id)
        await self.store.delete(SESSION_KEY.format(session_id))
        if session is not None:
            await self._index_remove(session.user_id, session_id)

    async def destroy_user_sessions(self, user_id: str, keep: Optional[str] = None) -> int:
        """End every session of a user except `keep`. Returns how many were ended"""
        destroyed = 0
        for session_id in await self.user_session_ids(user_id):
            if session_id == keep:
                continue
            await self.destroy(session_id)
            destroyed += 1
        if destroyed:
            logger.info(f"Destroyed {destroyed} sessions for user {user_id}")
        return destroyed

    async def user_session_ids(self, user_id: str) -> List[str]:
        raw = await self.store.get(USER_SESSIONS_KEY.format(user_id))
        return json.loads(raw) if raw else []

    async def _index_add(self, user_id: str, session_id: str) -> None:
        ids = await self.user_session_ids(user_id)
        live = [sid for sid in ids if await self.store.get(SESSION_KEY.format(sid)) is not None]
        live.append(session_id)
        await self.store.set(USER_SESSIONS_KEY.format(user_id), json.dumps(live), ttl=self._store_ttl)

    async def _index_remove(self, user_id: str, session_id: str) -> None:
        key = USER_SESSIONS_KEY.format(user_id)
        ids = [sid for sid in await self.user_session_ids(user_id) if sid != session_id]
        if ids:
            await self.store.set(key, json.dumps(ids), ttl=self._store_ttl)
        else:
            await self.store.delete(key)
