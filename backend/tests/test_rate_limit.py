"""Tests for the fixed-window rate limiter."""
import pytest

from clickstream.services.rate_limit import MemoryCounterBackend, RateLimiter
from clickstream.utils.exceptions import RateLimitError


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_limit_is_enforced_per_identifier():
    clock = FakeClock()
    limiter = RateLimiter("tracking", limit=2, window=60, backend=MemoryCounterBackend(clock))

    await limiter.check("a")
    status = await limiter.check("a")
    assert status.remaining == 0

    with pytest.raises(RateLimitError) as excinfo:
        await limiter.check("a")
    assert excinfo.value.retry_after == 60
    assert excinfo.value.status_code == 429

    # Other identifiers have their own counters
    assert (await limiter.check("b")).used == 1


@pytest.mark.asyncio
async def test_window_resets():
    clock = FakeClock()
    limiter = RateLimiter("tracking", limit=1, window=60, backend=MemoryCounterBackend(clock))

    await limiter.check("a")
    clock.now = 45
    with pytest.raises(RateLimitError) as excinfo:
        await limiter.check("a")
    assert excinfo.value.retry_after == 15

    clock.now = 60
    assert (await limiter.check("a")).used == 1


@pytest.mark.asyncio
async def test_whitelisted_identifiers_are_not_counted():
    limiter = RateLimiter("tracking", limit=1, window=60, backend=MemoryCounterBackend(), whitelist=["10.0.0.1"])

    for _ in range(5):
        await limiter.check("10.0.0.1")


@pytest.mark.asyncio
async def test_expired_counters_are_dropped():
    clock = FakeClock()
    backend = MemoryCounterBackend(clock)
    limiter = RateLimiter("tracking", limit=5, window=60, backend=backend)

    for identifier in ("a", "b", "c"):
        await limiter.check(identifier)
    assert len(backend) == 3

    clock.now = 120
    await limiter.check("d")

    assert len(backend) == 1


@pytest.mark.asyncio
async def test_counter_keys_do_not_contain_the_api_key():
    backend = MemoryCounterBackend(FakeClock())
    limiter = RateLimiter("tracking", limit=5, window=60, backend=backend)

    await limiter.check("cs_secret-api-key")

    assert not any("cs_secret-api-key" in key for key in backend._counters)
    assert all(key.startswith("rl:tracking:") for key in backend._counters)
