"""Shared types: the GUID column type and the Result wrapper for expected failures"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Generic, Optional, TypeVar
import uuid

from sqlalchemy import TypeDecorator, String

if TYPE_CHECKING:
    from app.core.exceptions import PortalError


T = TypeVar("T")


def generate_uuid():
    """Generate a UUID string"""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Timezone-aware current time for timestamp columns"""
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Stores UUIDs as VARCHAR(36) on every backend"""
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return str(value)
        return value


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of an operation that can fail in an expected way.

    Services return Result values; the HTTP layer calls unwrap(), which
    raises the carried PortalError so the exception handler can serialize it.
    """
    value: Optional[T] = None
    error: Optional["PortalError"] = None

    @classmethod
    def ok(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: "PortalError") -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value
