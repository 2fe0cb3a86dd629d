"""
Tests for the admission limiter.

Covers:
- N requests admitted, N+1 rejected, admitted again once the window slides
- tiers and identifiers are independent
- backend failure follows fail_open
- no backend admits everything
- Redis backend pipeline handling
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config import Settings
from services.rate_limit import (
    AdmissionLimiter,
    AdmissionTier,
    MemoryWindowBackend,
    RedisWindowBackend,
    TierPolicy,
    WindowBackend,
)


class BrokenBackend(WindowBackend):
    async def hit(self, key, limit, window_seconds, now):
        raise ConnectionError("redis unavailable")


class TestSlidingWindow:
    """Test window accounting on the in-memory backend"""

    @pytest.mark.asyncio
    async def test_registration_budget(self, limiter):
        """Test 3 registrations per hour are admitted and the 4th is rejected"""
        for i in range(3):
            decision = await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
            assert decision.allowed
            assert decision.remaining == 2 - i

        rejected = await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
        assert not rejected.allowed
        assert rejected.remaining == 0
        assert rejected.enforced

    @pytest.mark.asyncio
    async def test_admitted_again_after_window(self, limiter, clock):
        """Test the oldest request leaving the window frees one slot"""
        for _ in range(3):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
            clock.advance(60)

        assert not (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed

        # First request was at t0; at t0 + 3600 it is no longer counted
        clock.advance(3600 - 180)
        assert (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed
        assert not (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed

    @pytest.mark.asyncio
    async def test_rejected_requests_are_not_counted(self, limiter, clock):
        """Test hammering while blocked does not extend the block"""
        for _ in range(3):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
        for _ in range(10):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")

        clock.advance(3600)
        assert (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed

    @pytest.mark.asyncio
    async def test_retry_after_points_at_window_end(self, limiter, clock):
        """Test Retry-After is the time until the oldest request expires"""
        clock.now = start = 1_700_000_000.0
        for _ in range(3):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
        clock.advance(600)

        rejected = await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")

        assert rejected.reset_at == start + 3600
        assert rejected.retry_after(now=clock.now) == 3000
        headers = rejected.headers()
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_tiers_and_clients_are_independent(self, limiter):
        """Test one exhausted budget does not affect other tiers or addresses"""
        for _ in range(3):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")

        assert not (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed
        assert (await limiter.check(AdmissionTier.REGISTRATION, "198.51.100.1")).allowed
        assert (await limiter.check(AdmissionTier.VERIFICATION, "203.0.113.7")).allowed

    @pytest.mark.asyncio
    async def test_custom_policy(self, clock):
        """Test per-tier policies override the defaults"""
        limiter = AdmissionLimiter(
            MemoryWindowBackend(),
            policies={AdmissionTier.VERIFICATION: TierPolicy(limit=1, window_seconds=10)},
            clock=clock,
        )

        assert (await limiter.check(AdmissionTier.VERIFICATION, "a")).allowed
        assert not (await limiter.check(AdmissionTier.VERIFICATION, "a")).allowed
        assert limiter.policies[AdmissionTier.REGISTRATION].limit == 3

    @pytest.mark.asyncio
    async def test_reset_clears_budget(self, limiter):
        """Test reset forgets all requests for a key"""
        for _ in range(3):
            await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")

        await limiter.reset(AdmissionTier.REGISTRATION, "203.0.113.7")

        assert (await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")).allowed


class TestDegradedBackends:
    """Test behaviour without a working backend"""

    @pytest.mark.asyncio
    async def test_no_backend_admits_everything(self):
        """Test an unconfigured limiter never rejects"""
        limiter = AdmissionLimiter(None)

        for _ in range(10):
            decision = await limiter.check(AdmissionTier.REGISTRATION, "203.0.113.7")
            assert decision.allowed
            assert not decision.enforced
        assert not limiter.enabled

    @pytest.mark.asyncio
    async def test_backend_failure_fails_open(self):
        """Test requests are admitted when the backend errors and fail_open is set"""
        decision = await AdmissionLimiter(BrokenBackend(), fail_open=True).check(AdmissionTier.REGISTRATION, "x")

        assert decision.allowed
        assert not decision.enforced

    @pytest.mark.asyncio
    async def test_backend_failure_fails_closed(self):
        """Test requests are rejected when the backend errors and fail_open is off"""
        decision = await AdmissionLimiter(BrokenBackend(), fail_open=False).check(AdmissionTier.REGISTRATION, "x")

        assert not decision.allowed
        assert decision.remaining == 0


class TestRedisBackend:
    """Test the Redis sorted-set backend against a mocked client"""

    def _client(self, current_count, oldest):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, current_count, 1, True, oldest])
        client = MagicMock()
        client.pipeline.return_value = pipe
        client.zrem = AsyncMock()
        client.delete = AsyncMock()
        return client, pipe

    @pytest.mark.asyncio
    async def test_under_limit_is_admitted(self):
        """Test a request under the limit stays in the set"""
        client, pipe = self._client(current_count=1, oldest=[("m", 100.0)])

        state = await RedisWindowBackend(client).hit("ratelimit:registration:x", 3, 3600, now=200.0)

        assert state.allowed
        assert state.count == 2
        assert state.oldest == 100.0
        pipe.zremrangebyscore.assert_called_once_with("ratelimit:registration:x", "-inf", 200.0 - 3600)
        client.zrem.assert_not_called()

    @pytest.mark.asyncio
    async def test_over_limit_removes_the_new_member(self):
        """Test a rejected request is removed again so it is not counted"""
        client, _ = self._client(current_count=3, oldest=[("m", 100.0)])

        state = await RedisWindowBackend(client).hit("ratelimit:registration:x", 3, 3600, now=200.0)

        assert not state.allowed
        client.zrem.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_limiter_keys_by_tier_and_client(self, clock):
        """Test the limiter builds ratelimit:{tier}:{client} keys"""
        client, pipe = self._client(current_count=0, oldest=[])
        limiter = AdmissionLimiter(RedisWindowBackend(client), clock=clock)

        decision = await limiter.check(AdmissionTier.AVAILABILITY, "203.0.113.7")

        assert decision.allowed
        assert decision.remaining == 29
        pipe.zcard.assert_called_once_with("ratelimit:availability:203.0.113.7")


class TestFromSettings:
    """Test limiter construction from settings"""

    def test_in_memory_when_requested(self):
        """Test RATE_LIMIT_IN_MEMORY selects the memory backend"""
        limiter = AdmissionLimiter.from_settings(Settings(
            REDIS_URL="", RATE_LIMIT_IN_MEMORY=True, RATE_LIMIT_REGISTRATION=5
        ))

        assert isinstance(limiter.backend, MemoryWindowBackend)
        assert limiter.policies[AdmissionTier.REGISTRATION].limit == 5

    def test_disabled_without_configuration(self):
        """Test no Redis URL and no in-memory flag disables limiting"""
        limiter = AdmissionLimiter.from_settings(Settings(REDIS_URL="", RATE_LIMIT_IN_MEMORY=False))

        assert not limiter.enabled
