"""Fixed-window rate limiting with memory and Redis counters."""
import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

import redis.asyncio as redis

from clickstream.config import Settings
from clickstream.constants import RATE_LIMIT_PREFIX
from clickstream.utils.exceptions import RateLimitError
from clickstream.utils.hashing import digest
from clickstream.utils.logger import logger


@dataclass
class RateLimitStatus:
    limit: int
    used: int
    remaining: int
    reset_in: int


class CounterBackend(ABC):
    """Atomic increment-and-read of a counter that expires with its window."""

    @abstractmethod
    async def incr(self, key: str, window: int) -> Tuple[int, int]:
        """Increment ``key`` and return ``(count, seconds_until_reset)``."""

    async def close(self) -> None:
        return None


class MemoryCounterBackend(CounterBackend):
    """In-process counters; expired windows are swept at most once per window."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._next_sweep = 0.0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._counters)

    def _sweep(self, now: float, window: int) -> None:
        expired = [key for key, (_, reset_at) in self._counters.items() if reset_at <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + window
        if expired:
            logger.debug(f"Dropped {len(expired)} expired rate limit counters")

    async def incr(self, key: str, window: int) -> Tuple[int, int]:
        async with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now, window)
            count, reset_at = self._counters.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window
            count += 1
            self._counters[key] = (count, reset_at)
            return count, max(1, math.ceil(reset_at - now))


class RedisCounterBackend(CounterBackend):
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterBackend":
        return cls(redis.from_url(url, decode_responses=True))

    async def incr(self, key: str, window: int) -> Tuple[int, int]:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()
        # First hit in the window, or a key left without expiry
        if ttl < 0:
            await self._client.expire(key, window)
            ttl = window
        return int(count), int(ttl)

    async def close(self) -> None:
        await self._client.aclose()


class RateLimiter:
    """Per-identifier request quota over a fixed window."""

    def __init__(
        self,
        name: str,
        limit: int,
        window: int,
        backend: CounterBackend,
        whitelist: Optional[Iterable[str]] = None,
    ):
        self.name = name
        self.limit = limit
        self.window = window
        self.backend = backend
        self.whitelist = set(whitelist or ())

    def _key(self, identifier: str) -> str:
        # Identifiers may be API keys; only their digest is stored
        return f"{RATE_LIMIT_PREFIX}{self.name}:{digest(identifier)}"

    async def check(self, identifier: str) -> RateLimitStatus:
        """
        Count one request for ``identifier``.

        Args:
            identifier: API key or client IP

        Returns:
            RateLimitStatus for the current window

        Raises:
            RateLimitError: If the quota for this window is exhausted
        """
        if identifier in self.whitelist:
            return RateLimitStatus(self.limit, 0, self.limit, self.window)

        count, reset_in = await self.backend.incr(self._key(identifier), self.window)
        status = RateLimitStatus(
            limit=self.limit,
            used=count,
            remaining=max(0, self.limit - count),
            reset_in=reset_in,
        )
        if count > self.limit:
            logger.warning(f"Rate limit '{self.name}' exceeded for client {digest(identifier)[:12]}")
            raise RateLimitError(
                f"Too many requests. Limit: {self.limit} per {self.window} seconds",
                retry_after=reset_in,
            )
        return status


def build_counter_backend(settings: Settings) -> CounterBackend:
    if settings.rate_limit_driver == "redis":
        return RedisCounterBackend.from_url(settings.redis_url)
    return MemoryCounterBackend()


def build_rate_limiters(settings: Settings, backend: CounterBackend) -> Dict[str, RateLimiter]:
    """Create the tracking and analytics limiters sharing one counter backend."""
    whitelist = settings.whitelisted_ips
    return {
        "tracking": RateLimiter(
            "tracking", settings.tracking_rate_limit, settings.rate_limit_window_seconds, backend, whitelist
        ),
        "analytics": RateLimiter(
            "analytics", settings.analytics_rate_limit, settings.rate_limit_window_seconds, backend, whitelist
        ),
    }
