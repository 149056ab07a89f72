"""TTL cache stores (in-process and Redis).

Both stores share one contract: ``get`` on an expired entry is a miss that
evicts it, ``set`` with a falsy ttl stores without expiry, and ``update``
performs an atomic read-modify-write on a single key.
"""
import asyncio
import copy
import fnmatch
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis

from clickstream.config import Settings
from clickstream.services.metrics import MetricsCollector
from clickstream.utils.logger import logger

_DEFAULT_TTL = object()


@dataclass
class CacheEntry:
    value: Any
    expiry: Optional[float]
    created_at: float


class CacheStore(ABC):
    """Common cache contract."""

    def __init__(self, default_ttl: int = 3600, metrics: Optional[MetricsCollector] = None):
        self.default_ttl = default_ttl
        self._metrics = metrics

    def _resolve_ttl(self, ttl: Any) -> Optional[int]:
        if ttl is _DEFAULT_TTL:
            ttl = self.default_ttl
        return int(ttl) if ttl else None

    def _record(self, operation: str, hit: Optional[bool] = None) -> None:
        if self._metrics is None:
            return
        self._metrics.capture("cache_operations_total", 1, {"operation": operation})
        if hit is not None:
            self._metrics.capture("cache_hits_total" if hit else "cache_misses_total")

    @abstractmethod
    async def get(self, key: str) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Any = _DEFAULT_TTL) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> bool:
        ...

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        ...

    @abstractmethod
    async def update(self, key: str, fn: Callable[[Any], Any], ttl: Any = _DEFAULT_TTL) -> Any:
        ...

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        ...

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number removed."""
        removed = 0
        for key in await self.keys(pattern):
            if await self.delete(key):
                removed += 1
        return removed

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """Dictionary-backed cache with lazy expiry and per-key locks."""

    def __init__(
        self,
        default_ttl: int = 3600,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(default_ttl, metrics)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expiry is not None and entry.expiry <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get(self, key: str) -> Any:
        entry = self._live_entry(key)
        self._record("get", hit=entry is not None)
        return copy.deepcopy(entry.value) if entry else None

    async def set(self, key: str, value: Any, ttl: Any = _DEFAULT_TTL) -> bool:
        now = self._clock()
        seconds = self._resolve_ttl(ttl)
        self._entries[key] = CacheEntry(
            value=copy.deepcopy(value),
            expiry=now + seconds if seconds else None,
            created_at=now,
        )
        self._record("set")
        return True

    async def delete(self, key: str) -> bool:
        self._record("delete")
        self._locks.pop(key, None)
        return self._entries.pop(key, None) is not None

    async def clear(self) -> bool:
        self._record("clear")
        self._entries.clear()
        self._locks.clear()
        return True

    async def keys(self, pattern: str = "*") -> List[str]:
        return [key for key in list(self._entries) if fnmatch.fnmatchcase(key, pattern) and self._live_entry(key)]

    async def update(self, key: str, fn: Callable[[Any], Any], ttl: Any = _DEFAULT_TTL) -> Any:
        async with self._lock_for(key):
            entry = self._live_entry(key)
            current = copy.deepcopy(entry.value) if entry else None
            new_value = fn(current)
            await self.set(key, new_value, ttl)
            return new_value

    async def get_stats(self) -> Dict[str, Any]:
        keys = await self.keys()
        return {"size": len(keys), "keys": keys}


class RedisCacheStore(CacheStore):
    """Redis-backed cache. Values are JSON; keys live under ``namespace``."""

    def __init__(
        self,
        client: "redis.Redis",
        default_ttl: int = 3600,
        metrics: Optional[MetricsCollector] = None,
        namespace: str = "cache:",
        lock_timeout: int = 5,
    ):
        super().__init__(default_ttl, metrics)
        self._client = client
        self._namespace = namespace
        self._lock_timeout = lock_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCacheStore":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> Any:
        raw = await self._client.get(self._key(key))
        self._record("get", hit=raw is not None)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: Any = _DEFAULT_TTL) -> bool:
        seconds = self._resolve_ttl(ttl)
        payload = json.dumps(value, default=str)
        if seconds:
            await self._client.set(self._key(key), payload, ex=seconds)
        else:
            await self._client.set(self._key(key), payload)
        self._record("set")
        return True

    async def delete(self, key: str) -> bool:
        self._record("delete")
        return bool(await self._client.delete(self._key(key)))

    async def clear(self) -> bool:
        self._record("clear")
        await self.delete_pattern("*")
        return True

    async def keys(self, pattern: str = "*") -> List[str]:
        offset = len(self._namespace)
        return [key[offset:] async for key in self._client.scan_iter(match=self._key(pattern))]

    async def update(self, key: str, fn: Callable[[Any], Any], ttl: Any = _DEFAULT_TTL) -> Any:
        lock = self._client.lock(f"lock:{self._key(key)}", timeout=self._lock_timeout, blocking_timeout=self._lock_timeout)
        async with lock:
            new_value = fn(await self.get(key))
            await self.set(key, new_value, ttl)
            return new_value

    async def get_stats(self) -> Dict[str, Any]:
        keys = await self.keys()
        return {"size": len(keys), "keys": keys}

    async def close(self) -> None:
        await self._client.aclose()


def build_cache(settings: Settings, metrics: Optional[MetricsCollector] = None) -> CacheStore:
    """Create the cache store selected by ``CACHE_DRIVER``."""
    if settings.cache_driver == "redis":
        logger.info(f"Using Redis cache at {settings.redis_url}")
        return RedisCacheStore.from_url(settings.redis_url, default_ttl=settings.cache_ttl, metrics=metrics)
    return MemoryCacheStore(default_ttl=settings.cache_ttl, metrics=metrics)
