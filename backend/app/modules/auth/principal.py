import enum
from dataclasses import dataclass
from typing import Optional

from app.models.user import UserRole


class AuthMode(str, enum.Enum):
    """Which credentials a route accepts. Declared per route, never inferred"""
    BEARER = "bearer"
    SESSION = "session"
    BEARER_OR_SESSION = "bearer_or_session"

    @property
    def accepts_bearer(self) -> bool:
        return self in (AuthMode.BEARER, AuthMode.BEARER_OR_SESSION)

    @property
    def accepts_session(self) -> bool:
        return self in (AuthMode.SESSION, AuthMode.BEARER_OR_SESSION)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity for the current request. Never persisted"""
    id: str
    email: str
    role: UserRole
    session_id: Optional[str] = None
    via: Optional[AuthMode] = None
