"""
Rate Limiting for the College Portal API
========================================
Fixed-window limits per (client, category) using the `limits` library, the
engine behind slowapi. Counters live in limits' async MemoryStorage, or in
Redis when STATE_BACKEND=redis so the same limits hold across workers.

Categories and defaults (all configurable):
- auth:            5 requests / 15 minutes (login, register)
- api:             100 requests / 15 minutes (general API)
- strict:          20 requests / 15 minutes (uploads, publishing)
- password-change: 3 requests / hour

The (max + 1)th request inside a window is rejected with 429.
"""

import enum
import ipaddress
import math
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from fastapi import Request
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

from app.core.config import Settings
from app.core.exceptions import RateLimitError
from app.core.logging_config import logger
from app.core.types import Result

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class RateLimitCategory(str, enum.Enum):
    AUTH = "auth"
    API = "api"
    STRICT = "strict"
    PASSWORD_CHANGE = "password-change"


@dataclass(frozen=True)
class RateLimitRule:
    window_seconds: int
    max_requests: int
    message: str

    @property
    def item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(self.max_requests, self.window_seconds, namespace="ratelimit")


@dataclass(frozen=True)
class RateLimitEntry:
    key: str
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    category: RateLimitCategory
    limit: int
    remaining: int
    retry_after: int
    entry: Optional[RateLimitEntry] = None


def _minutes(seconds: int) -> int:
    return max(1, math.ceil(seconds / 60))


def build_rate_limit_rules(app_settings: Settings) -> Dict[RateLimitCategory, RateLimitRule]:
    """Rules per category from settings"""
    auth_window = app_settings.RATE_LIMIT_AUTH_WINDOW_SECONDS
    password_window = app_settings.RATE_LIMIT_PASSWORD_CHANGE_WINDOW_SECONDS
    return {
        RateLimitCategory.AUTH: RateLimitRule(
            auth_window,
            app_settings.RATE_LIMIT_AUTH_MAX,
            f"Too many login attempts. Please try again in {_minutes(auth_window)} minutes.",
        ),
        RateLimitCategory.API: RateLimitRule(
            app_settings.RATE_LIMIT_API_WINDOW_SECONDS,
            app_settings.RATE_LIMIT_API_MAX,
            "Too many requests. Please try again later.",
        ),
        RateLimitCategory.STRICT: RateLimitRule(
            app_settings.RATE_LIMIT_STRICT_WINDOW_SECONDS,
            app_settings.RATE_LIMIT_STRICT_MAX,
            "Request limit exceeded for this operation.",
        ),
        RateLimitCategory.PASSWORD_CHANGE: RateLimitRule(
            password_window,
            app_settings.RATE_LIMIT_PASSWORD_CHANGE_MAX,
            f"Too many password change attempts. Please try again in {_minutes(password_window)} minutes.",
        ),
    }


def build_rate_limit_storage(app_settings: Settings) -> Storage:
    """Async limits storage matching the configured state backend"""
    if app_settings.STATE_BACKEND == "redis":
        logger.info("Rate limiting using Redis storage")
        return storage_from_string(f"async+{app_settings.REDIS_URL}", implementation="redispy")
    return MemoryStorage()


class CategoryRateLimiter:
    """Counts requests per client and category inside fixed windows"""

    def __init__(
        self,
        storage: Storage,
        rules: Dict[RateLimitCategory, RateLimitRule],
        enabled: bool = True,
    ):
        self.storage = storage
        self.rules = rules
        self.enabled = enabled
        self._limiter = FixedWindowRateLimiter(storage)

    async def hit(self, category: RateLimitCategory, client_key: str) -> RateLimitDecision:
        """Count one request and decide whether it may proceed"""
        rule = self.rules[category]
        if not self.enabled:
            return RateLimitDecision(True, category, rule.max_requests, rule.max_requests, 0)

        item = rule.item
        allowed = await self._limiter.hit(item, category.value, client_key)
        stats = await self._limiter.get_window_stats(item, category.value, client_key)

        key = item.key_for(category.value, client_key)
        entry = RateLimitEntry(
            key=key,
            count=await self.storage.get(key),
            window_start=stats.reset_time - rule.window_seconds,
        )
        return RateLimitDecision(
            allowed=allowed,
            category=category,
            limit=rule.max_requests,
            remaining=stats.remaining,
            retry_after=max(1, math.ceil(stats.reset_time - time.time())),
            entry=entry,
        )

    async def check(self, category: RateLimitCategory, client_key: str, path: str = None) -> Result[RateLimitDecision]:
        decision = await self.hit(category, client_key)
        if decision.allowed:
            return Result.ok(decision)

        logger.log_security_event(
            "rate_limit_exceeded",
            client_ip=client_key,
            path=path,
            rate_limit_category=category.value,
            request_count=decision.entry.count if decision.entry else None,
            limit=decision.limit,
        )
        error = RateLimitError(self.rules[category].message, retry_after=decision.retry_after)
        error.headers["X-RateLimit-Limit"] = str(decision.limit)
        error.headers["X-RateLimit-Remaining"] = "0"
        return Result.fail(error)


# ==========================================
# Client identification
# ==========================================

def parse_trusted_proxies(values: Iterable[str]) -> List[IPNetwork]:
    """IPs and CIDRs allowed to report the original client in X-Forwarded-For"""
    networks = []
    for value in values:
        try:
            networks.append(ipaddress.ip_network(value.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy entry: {value!r}")
    return networks


def _is_trusted(address: str, trusted: List[IPNetwork]) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in network for network in trusted)


def resolve_client_ip(request: Request, trusted_proxies: List[IPNetwork]) -> str:
    """
    Client address used for rate limits and lockouts.

    X-Forwarded-For is read only when the direct peer is a trusted proxy; the
    right-most untrusted hop is the client. Anyone else could forge the header.
    """
    peer = request.client.host if request.client else "unknown"
    if not trusted_proxies or not _is_trusted(peer, trusted_proxies):
        return peer

    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded:
        return peer

    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, trusted_proxies):
            try:
                return str(ipaddress.ip_address(hop))
            except ValueError:
                # Garbage in the chain: stop at the last address we can vouch for
                return peer
    return hops[0] if hops else peer


__all__ = [
    "RateLimitCategory",
    "RateLimitRule",
    "RateLimitEntry",
    "RateLimitDecision",
    "CategoryRateLimiter",
    "build_rate_limit_rules",
    "build_rate_limit_storage",
    "parse_trusted_proxies",
    "resolve_client_ip",
]
