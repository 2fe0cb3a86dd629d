"""
Admission Limiter

Sliding-window request counters keyed by (endpoint tier, client address).

Backends:
- RedisWindowBackend: Redis sorted sets, shared by every API instance
- MemoryWindowBackend: process-local, for single-instance deployments and tests

Each request is stored as a member of a sorted set with its timestamp as the
score; the window is the set of members newer than ``now - window``. Counting
is best-effort: concurrent callers may occasionally be over-admitted.

When no backend is configured every request is admitted. When the backend
fails, ``fail_open`` decides: admit (the default, registration availability
wins) or reject.
"""

import asyncio
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Mapping, Optional

import redis.asyncio as redis_asyncio

from config import Settings

logger = logging.getLogger(__name__)


class AdmissionTier(str, Enum):
    """Endpoint tiers with independent budgets"""
    REGISTRATION = "registration"
    VERIFICATION = "verification"
    AVAILABILITY = "availability"


@dataclass(frozen=True)
class TierPolicy:
    limit: int
    window_seconds: int


DEFAULT_POLICIES: Dict[AdmissionTier, TierPolicy] = {
    AdmissionTier.REGISTRATION: TierPolicy(limit=3, window_seconds=3600),
    AdmissionTier.VERIFICATION: TierPolicy(limit=10, window_seconds=60),
    AdmissionTier.AVAILABILITY: TierPolicy(limit=30, window_seconds=60),
}


@dataclass
class WindowState:
    """What a backend saw for one hit"""
    allowed: bool
    count: int  # requests in the window, including this one when allowed
    oldest: Optional[float]  # timestamp of the oldest request still in the window


@dataclass
class AdmissionDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the oldest counted request leaves the window
    enforced: bool = True

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


# ==================== BACKENDS ====================

class WindowBackend(ABC):
    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> WindowState:
        """Record a request if it fits the window and report the window state"""

    async def reset(self, key: str) -> None:
        """Forget all requests for ``key``"""


class RedisWindowBackend(WindowBackend):
    """
    Sliding window on Redis sorted sets.

    This approach:
    - Gives an accurate sliding window (no burst at window boundaries)
    - Works across instances (all share the same sorted sets)
    - Expires idle keys on their own via EXPIRE
    """

    def __init__(self, client):
        self.redis = client

    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> WindowState:
        member = f"{now}:{uuid.uuid4().hex}"

        pipe = self.redis.pipeline()
        # Remove expired entries
        pipe.zremrangebyscore(key, "-inf", now - window_seconds)
        # Count current entries
        pipe.zcard(key)
        # Add current request (removed again below if over limit)
        pipe.zadd(key, {member: now})
        pipe.expire(key, window_seconds + 10)
        pipe.zrange(key, 0, 0, withscores=True)
        results = await pipe.execute()

        current_count = int(results[1])
        oldest_entries = results[4]
        oldest = float(oldest_entries[0][1]) if oldest_entries else None

        if current_count >= limit:
            await self.redis.zrem(key, member)
            return WindowState(allowed=False, count=current_count, oldest=oldest)

        return WindowState(allowed=True, count=current_count + 1, oldest=oldest if oldest is not None else now)

    async def reset(self, key: str) -> None:
        await self.redis.delete(key)


class MemoryWindowBackend(WindowBackend):
    """
    In-memory sliding window.

    Same algorithm as the Redis backend, kept in process memory. Not shared
    between instances.
    """

    def __init__(self):
        self.buckets: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_seconds: int, now: float) -> WindowState:
        async with self._lock:
            bucket = self.buckets[key]
            cutoff = now - window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                return WindowState(allowed=False, count=len(bucket), oldest=bucket[0])

            bucket.append(now)
            return WindowState(allowed=True, count=len(bucket), oldest=bucket[0])

    async def reset(self, key: str) -> None:
        async with self._lock:
            self.buckets.pop(key, None)


# ==================== LIMITER ====================

class AdmissionLimiter:
    """
    Tiered admission control in front of the public operations.

    Usage:
        limiter = AdmissionLimiter(MemoryWindowBackend())
        decision = await limiter.check(AdmissionTier.REGISTRATION, client_ip)
        if not decision.allowed:
            ...  # reject with 429, Retry-After = decision.retry_after()
    """

    def __init__(
        self,
        backend: Optional[WindowBackend],
        policies: Optional[Mapping[AdmissionTier, TierPolicy]] = None,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "ratelimit",
    ):
        self.backend = backend
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)
        self.fail_open = fail_open
        self.clock = clock
        self.key_prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    def _key(self, tier: AdmissionTier, identifier: str) -> str:
        return f"{self.key_prefix}:{tier.value}:{identifier or 'unknown'}"

    async def check(self, tier: AdmissionTier, identifier: str) -> AdmissionDecision:
        tier = AdmissionTier(tier)
        policy = self.policies[tier]
        now = self.clock()

        if self.backend is None:
            return AdmissionDecision(
                allowed=True,
                limit=policy.limit,
                remaining=policy.limit,
                reset_at=now,
                enforced=False,
            )

        try:
            state = await self.backend.hit(self._key(tier, identifier), policy.limit, policy.window_seconds, now)
        except Exception as e:
            logger.warning(f"Rate limit backend error on {tier.value}: {e}")
            return AdmissionDecision(
                allowed=self.fail_open,
                limit=policy.limit,
                remaining=policy.limit if self.fail_open else 0,
                reset_at=now + (0 if self.fail_open else policy.window_seconds),
                enforced=False,
            )

        oldest = state.oldest if state.oldest is not None else now
        decision = AdmissionDecision(
            allowed=state.allowed,
            limit=policy.limit,
            remaining=max(0, policy.limit - state.count) if state.allowed else 0,
            reset_at=oldest + policy.window_seconds,
        )
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded: tier={tier.value} identifier={identifier}")
        return decision

    async def reset(self, tier: AdmissionTier, identifier: str) -> None:
        if self.backend is not None:
            await self.backend.reset(self._key(AdmissionTier(tier), identifier))

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdmissionLimiter":
        """Build the limiter from settings: Redis when REDIS_URL is set, else memory or off"""
        backend: Optional[WindowBackend] = None
        if settings.REDIS_URL:
            client = redis_asyncio.from_url(
                settings.REDIS_URL,
                socket_timeout=2,
                socket_connect_timeout=2,
                decode_responses=True,
            )
            backend = RedisWindowBackend(client)
            logger.info("Rate limiting enabled (redis)")
        elif settings.RATE_LIMIT_IN_MEMORY:
            backend = MemoryWindowBackend()
            logger.info("Rate limiting enabled (in-memory)")
        else:
            logger.warning("Rate limiting not configured - all requests admitted")

        policies = {
            AdmissionTier.REGISTRATION: TierPolicy(
                settings.RATE_LIMIT_REGISTRATION, settings.RATE_LIMIT_REGISTRATION_WINDOW
            ),
            AdmissionTier.VERIFICATION: TierPolicy(
                settings.RATE_LIMIT_VERIFICATION, settings.RATE_LIMIT_VERIFICATION_WINDOW
            ),
            AdmissionTier.AVAILABILITY: TierPolicy(
                settings.RATE_LIMIT_AVAILABILITY, settings.RATE_LIMIT_AVAILABILITY_WINDOW
            ),
        }
        return cls(backend, policies=policies, fail_open=settings.RATE_LIMIT_FAIL_OPEN)
