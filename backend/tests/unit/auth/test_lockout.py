"""
Unit Tests for the failed-login lockout
"""
import pytest

from app.core.exceptions import AccountLockedError
from app.core.stores import InMemoryStore
from app.modules.auth.lockout import LockoutTracker, account_identifier, ip_identifier


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return LockoutTracker(
        InMemoryStore(clock=clock),
        threshold=5,
        window_seconds=1800,
        lockout_seconds=1800,
        clock=clock,
    )


class TestIdentifiers:
    def test_account_identifier_normalizes_email(self):
        assert account_identifier("  Student@College.EDU ") == "account:student@college.edu"

    def test_ip_identifier(self):
        assert ip_identifier("10.0.0.1") == "ip:10.0.0.1"


class TestLockoutTracker:
    """Test counting failures and locking"""

    @pytest.mark.asyncio
    async def test_below_threshold_not_locked(self, tracker):
        for _ in range(4):
            entry = await tracker.record_failure("account:a@college.edu")

        assert entry.failed_count == 4
        assert entry.locked_until is None
        assert (await tracker.check("account:a@college.edu")).is_ok

    @pytest.mark.asyncio
    async def test_threshold_locks(self, tracker, clock):
        for _ in range(5):
            entry = await tracker.record_failure("account:a@college.edu")

        assert entry.locked_until == clock.now + 1800
        result = await tracker.check("account:a@college.edu")
        assert isinstance(result.error, AccountLockedError)
        assert result.error.headers["Retry-After"] == "1800"

    @pytest.mark.asyncio
    async def test_any_locked_identifier_blocks(self, tracker):
        for _ in range(5):
            await tracker.record_failure("ip:10.0.0.1")

        result = await tracker.check("ip:10.0.0.1", "account:a@college.edu")

        assert not result.is_ok

    @pytest.mark.asyncio
    async def test_lock_expires(self, tracker, clock):
        for _ in range(5):
            await tracker.record_failure("account:a@college.edu")

        clock.advance(1801)

        assert (await tracker.check("account:a@college.edu")).is_ok

    @pytest.mark.asyncio
    async def test_failures_outside_window_forgotten(self, tracker, clock):
        for _ in range(4):
            await tracker.record_failure("account:a@college.edu")

        clock.advance(1800)
        entry = await tracker.record_failure("account:a@college.edu")

        assert entry.failed_count == 1
        assert entry.locked_until is None

    @pytest.mark.asyncio
    async def test_further_failures_do_not_extend_lock(self, tracker, clock):
        for _ in range(5):
            await tracker.record_failure("account:a@college.edu")
        first = (await tracker.status("account:a@college.edu")).locked_until

        clock.advance(60)
        entry = await tracker.record_failure("account:a@college.edu")

        assert entry.locked_until == first

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, tracker):
        for _ in range(5):
            await tracker.record_failure("account:a@college.edu")

        await tracker.reset("account:a@college.edu")

        entry = await tracker.status("account:a@college.edu")
        assert entry.failed_count == 0
        assert entry.locked_until is None
        assert (await tracker.check("account:a@college.edu")).is_ok
