"""
Key/value state behind rate limits, lockouts and sessions.

Two backends share one async interface:
- InMemoryStore: process-local, the default. Lost on restart and not shared
  between workers.
- RedisStore: for deployments running several workers or instances.

Values are strings. Counters are strings holding integers.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from app.core.config import Settings
from app.core.logging_config import logger


class StateStore(ABC):
    """Async key/value store with counters and per-key expiry"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> int:
        """Add to a counter, creating it at 0 without expiry. Returns the new value"""

    @abstractmethod
    async def expire(self, key: str, ttl: float) -> bool:
        """Set a key to expire ttl seconds from now. False if the key is absent"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until expiry, or None for missing keys and keys without expiry"""

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    value: str
    expires_at: Optional[float] = None


class InMemoryStore(StateStore):
    """
    Dict-backed store.

    Expiry is checked on every access, so an expired key is never returned
    even if its eviction timer has not fired yet. Timers only bound memory.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, _Entry] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live_entry(self, key: str) -> Optional[_Entry]:
        # Caller holds the lock
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _schedule_eviction(self, key: str, ttl: float) -> None:
        # Caller holds the lock
        old = self._timers.pop(key, None)
        if old is not None:
            old.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[key] = loop.call_later(max(ttl, 0), self._evict, key)

    def _cancel_eviction(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _evict(self, key: str) -> None:
        with self._lock:
            self._timers.pop(key, None)
            entry = self._data.get(key)
            if entry is None or entry.expires_at is None:
                return
            remaining = entry.expires_at - self._clock()
            if remaining <= 0:
                del self._data[key]
            else:
                # Timer fired early relative to the store clock
                self._schedule_eviction(key, remaining)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        with self._lock:
            if ttl is None:
                self._data[key] = _Entry(value)
                self._cancel_eviction(key)
            else:
                self._data[key] = _Entry(value, self._clock() + ttl)
                self._schedule_eviction(key, ttl)

    async def increment(self, key: str, amount: int = 1) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                entry = _Entry("0")
                self._data[key] = entry
            new_value = int(entry.value) + amount
            entry.value = str(new_value)
            return new_value

    async def expire(self, key: str, ttl: float) -> bool:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl
            self._schedule_eviction(key, ttl)
            return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            self._cancel_eviction(key)
            return self._data.pop(key, None) is not None

    async def ttl(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None or entry.expires_at is None:
                return None
            return entry.expires_at - self._clock()

    async def close(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisStore(StateStore):
    """
    Redis-backed store.

    Errors propagate: when Redis is unreachable requests fail instead of
    silently skipping rate limits or session checks.
    """

    def __init__(self, redis: Redis, prefix: str = "portal:"):
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "portal:") -> "RedisStore":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(self._key(key))

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        if ttl is None:
            await self.redis.set(self._key(key), value)
        else:
            await self.redis.set(self._key(key), value, px=max(1, int(ttl * 1000)))

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self.redis.incrby(self._key(key), amount))

    async def expire(self, key: str, ttl: float) -> bool:
        return bool(await self.redis.pexpire(self._key(key), max(1, int(ttl * 1000))))

    async def delete(self, key: str) -> bool:
        return bool(await self.redis.delete(self._key(key)))

    async def ttl(self, key: str) -> Optional[float]:
        remaining_ms = await self.redis.pttl(self._key(key))
        # -2: missing key, -1: no expiry
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Redis state store disconnected")


def build_state_store(app_settings: Settings) -> StateStore:
    """Create the configured backend"""
    if app_settings.STATE_BACKEND == "redis":
        logger.info("Using Redis state store")
        return RedisStore.from_url(app_settings.REDIS_URL)
    if app_settings.is_production():
        logger.warning(
            "Using in-memory state store in production: rate limits, lockouts and "
            "sessions are per-process and reset on restart"
        )
    return InMemoryStore()
