"""Fixed-window rate limiting behind a swappable store.

The limiter itself holds no counters: buckets live in a RateLimitStore so a
shared cache can replace the in-memory map when running several instances.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from app.core.config import Settings

logger = logging.getLogger(__name__)

# scopes used outside the middleware
LOGIN_SCOPE = "login"
REGISTER_SCOPE = "register"


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: float


@dataclass
class Bucket:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int | None = None


class RateLimitStore(Protocol):
    async def get(self, key: str) -> Bucket | None: ...

    async def set(self, key: str, bucket: Bucket) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryRateLimitStore:
    """Process-local store. Expired buckets are purged at most once a minute."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, purge_interval: float = 60.0):
        self._buckets: dict[str, Bucket] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._purge_interval = purge_interval
        self._next_purge = clock() + purge_interval

    def __len__(self) -> int:
        return len(self._buckets)

    async def get(self, key: str) -> Bucket | None:
        bucket = self._buckets.get(key)
        return Bucket(bucket.count, bucket.reset_at) if bucket else None

    async def set(self, key: str, bucket: Bucket) -> None:
        async with self._lock:
            self._buckets[key] = Bucket(bucket.count, bucket.reset_at)
            self._purge_expired()

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._buckets.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        if now < self._next_purge:
            return
        self._next_purge = now + self._purge_interval
        expired = [k for k, b in self._buckets.items() if now > b.reset_at]
        for k in expired:
            del self._buckets[k]


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        rules: dict[str, RateLimitRule] | None = None,
        default: RateLimitRule = RateLimitRule(50, 60),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.rules = dict(rules or {})
        self.default = default
        self._clock = clock

    def rule_for(self, scope: str) -> RateLimitRule:
        return self.rules.get(scope, self.default)

    @staticmethod
    def _key(identifier: str, scope: str) -> str:
        return f"{identifier}:{scope}"

    async def hit(self, identifier: str, scope: str) -> RateLimitResult:
        """Count one request for identifier in scope."""
        rule = self.rule_for(scope)
        key = self._key(identifier, scope)
        now = self._clock()
        bucket = await self.store.get(key)

        if bucket is None or now > bucket.reset_at:
            await self.store.set(key, Bucket(1, now + rule.window_seconds))
            return RateLimitResult(True, rule.max_requests, rule.max_requests - 1)

        if bucket.count >= rule.max_requests:
            retry_after = max(1, math.ceil(bucket.reset_at - now))
            logger.warning("Rate limit exceeded for %s", key)
            return RateLimitResult(False, rule.max_requests, 0, retry_after)

        bucket.count += 1
        await self.store.set(key, bucket)
        return RateLimitResult(True, rule.max_requests, rule.max_requests - bucket.count)

    async def reset(self, identifier: str, scope: str) -> None:
        await self.store.delete(self._key(identifier, scope))

    async def status(self, identifier: str, scope: str) -> RateLimitResult | None:
        bucket = await self.store.get(self._key(identifier, scope))
        if bucket is None:
            return None
        rule = self.rule_for(scope)
        remaining = max(0, rule.max_requests - bucket.count)
        return RateLimitResult(remaining > 0, rule.max_requests, remaining)


def default_rules(settings: Settings) -> dict[str, RateLimitRule]:
    return {
        "/api/auth": RateLimitRule(settings.RATE_LIMIT_AUTH_MAX, settings.RATE_LIMIT_AUTH_WINDOW_SECONDS),
        "/api/user": RateLimitRule(settings.RATE_LIMIT_USER_MAX, settings.RATE_LIMIT_USER_WINDOW_SECONDS),
        LOGIN_SCOPE: RateLimitRule(settings.LOGIN_MAX_ATTEMPTS, settings.LOGIN_WINDOW_SECONDS),
        REGISTER_SCOPE: RateLimitRule(settings.REGISTER_MAX_ATTEMPTS, settings.REGISTER_WINDOW_SECONDS),
    }


def build_rate_limiter(settings: Settings, store: RateLimitStore | None = None) -> RateLimiter:
    return RateLimiter(
        store or MemoryRateLimitStore(),
        rules=default_rules(settings),
        default=RateLimitRule(settings.RATE_LIMIT_DEFAULT_MAX, settings.RATE_LIMIT_DEFAULT_WINDOW_SECONDS),
    )
