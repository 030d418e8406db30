"""
Unit Tests for Rate Limiting
Tests for: category windows, 429 errors, client IP resolution
"""
import asyncio
import time

import pytest
from limits.aio.storage import MemoryStorage
from types import SimpleNamespace

from app.core.config import Settings
from app.core.exceptions import RateLimitError
from app.core.rate_limiter import (
    CategoryRateLimiter,
    RateLimitCategory,
    RateLimitRule,
    build_rate_limit_rules,
    build_rate_limit_storage,
    parse_trusted_proxies,
    resolve_client_ip,
)


def make_limiter(max_requests=5, window=900, enabled=True):
    rules = {
        category: RateLimitRule(window, max_requests, f"{category.value} limit hit")
        for category in RateLimitCategory
    }
    return CategoryRateLimiter(MemoryStorage(), rules, enabled=enabled)


def fake_request(peer: str, forwarded: str = None):
    headers = {"X-Forwarded-For": forwarded} if forwarded else {}
    return SimpleNamespace(client=SimpleNamespace(host=peer), headers=headers)


class TestCategoryRateLimiter:
    """Test fixed-window counting"""

    @pytest.mark.asyncio
    async def test_sixth_request_rejected(self):
        limiter = make_limiter(max_requests=5)

        for _ in range(5):
            result = await limiter.check(RateLimitCategory.AUTH, "10.0.0.1")
            assert result.is_ok

        result = await limiter.check(RateLimitCategory.AUTH, "10.0.0.1")

        assert isinstance(result.error, RateLimitError)
        assert result.error.status_code == 429
        assert result.error.message == "auth limit hit"
        assert 0 < int(result.error.headers["Retry-After"]) <= 900
        assert result.error.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self):
        limiter = make_limiter(max_requests=3)

        decisions = [await limiter.hit(RateLimitCategory.API, "10.0.0.1") for _ in range(3)]

        assert [d.remaining for d in decisions] == [2, 1, 0]
        assert all(d.allowed for d in decisions)

    @pytest.mark.asyncio
    async def test_entry_tracks_count_and_window(self):
        limiter = make_limiter(max_requests=5, window=900)

        for _ in range(3):
            decision = await limiter.hit(RateLimitCategory.STRICT, "10.0.0.1")

        assert decision.entry.count == 3
        assert "strict" in decision.entry.key and "10.0.0.1" in decision.entry.key
        assert time.time() - 5 < decision.entry.window_start <= time.time()

    @pytest.mark.asyncio
    async def test_window_resets(self):
        limiter = make_limiter(max_requests=1, window=1)
        await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")
        assert not (await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")).allowed

        await asyncio.sleep(1.1)

        assert (await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")).allowed

    @pytest.mark.asyncio
    async def test_retry_after_within_window(self):
        limiter = make_limiter(max_requests=1, window=60)
        await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")

        decision = await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")

        assert not decision.allowed
        assert 0 < decision.retry_after <= 60

    @pytest.mark.asyncio
    async def test_categories_and_clients_are_independent(self):
        limiter = make_limiter(max_requests=1)
        await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")

        assert (await limiter.hit(RateLimitCategory.API, "10.0.0.1")).allowed
        assert (await limiter.hit(RateLimitCategory.AUTH, "10.0.0.2")).allowed
        assert not (await limiter.hit(RateLimitCategory.AUTH, "10.0.0.1")).allowed

    @pytest.mark.asyncio
    async def test_disabled_limiter_allows_everything(self):
        limiter = make_limiter(max_requests=1, enabled=False)

        for _ in range(5):
            assert (await limiter.check(RateLimitCategory.AUTH, "10.0.0.1")).is_ok

    def test_memory_storage_by_default(self):
        assert isinstance(build_rate_limit_storage(Settings()), MemoryStorage)


class TestRateLimitRules:
    """Test rule defaults from settings"""

    def test_default_rules(self):
        rules = build_rate_limit_rules(Settings())

        assert (rules[RateLimitCategory.AUTH].window_seconds, rules[RateLimitCategory.AUTH].max_requests) == (900, 5)
        assert (rules[RateLimitCategory.API].window_seconds, rules[RateLimitCategory.API].max_requests) == (900, 100)
        assert (rules[RateLimitCategory.STRICT].window_seconds, rules[RateLimitCategory.STRICT].max_requests) == (900, 20)
        assert rules[RateLimitCategory.PASSWORD_CHANGE].window_seconds == 3600
        assert rules[RateLimitCategory.PASSWORD_CHANGE].max_requests == 3

    def test_auth_message(self):
        rules = build_rate_limit_rules(Settings())

        assert rules[RateLimitCategory.AUTH].message == "Too many login attempts. Please try again in 15 minutes."


class TestClientIp:
    """Test X-Forwarded-For handling"""

    def test_header_ignored_without_trusted_proxies(self):
        request = fake_request("203.0.113.7", forwarded="1.2.3.4")

        assert resolve_client_ip(request, []) == "203.0.113.7"

    def test_header_ignored_from_untrusted_peer(self):
        request = fake_request("203.0.113.7", forwarded="1.2.3.4")

        assert resolve_client_ip(request, parse_trusted_proxies(["10.0.0.0/8"])) == "203.0.113.7"

    def test_trusted_proxy_reports_client(self):
        request = fake_request("10.0.0.5", forwarded="198.51.100.20")

        assert resolve_client_ip(request, parse_trusted_proxies(["10.0.0.0/8"])) == "198.51.100.20"

    def test_rightmost_untrusted_hop_wins(self):
        """A client cannot spoof its address by prepending entries"""
        request = fake_request("10.0.0.5", forwarded="6.6.6.6, 198.51.100.20, 10.0.0.9")

        assert resolve_client_ip(request, parse_trusted_proxies(["10.0.0.0/8"])) == "198.51.100.20"

    def test_invalid_proxy_entries_are_skipped(self):
        networks = parse_trusted_proxies(["10.0.0.1", "not-an-ip", "192.168.0.0/16"])

        assert len(networks) == 2
