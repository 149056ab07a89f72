"""HTTP response caching for idempotent analytics reads."""
import re
from typing import Any, Awaitable, Callable, Optional, Tuple

from fastapi import Request

from clickstream.constants import RESPONSE_CACHE_PREFIX
from clickstream.services.cache import CacheStore
from clickstream.utils.hashing import digest

DEFAULT_DURATION = 300

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Any, default: int = DEFAULT_DURATION) -> int:
    """
    Parse a duration such as ``"30s"``, ``"5m"``, ``"1h"`` or ``"1d"``.

    Integers are taken as seconds. Anything unparseable yields ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if not isinstance(value, str):
        return default
    match = _DURATION_PATTERN.match(value.lower())
    if not match:
        return default
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def response_cache_key(request: Request, principal_id: Optional[str]) -> str:
    """Key over path, sorted query, principal and Accept-Language."""
    query = sorted(request.query_params.multi_items())
    language = request.headers.get("accept-language", "")
    return f"{RESPONSE_CACHE_PREFIX}{digest(request.url.path, query, principal_id, language)}"


class ResponseCache:
    """Cache-aside wrapper returning the payload and an ``X-Cache`` marker."""

    def __init__(self, cache: CacheStore, duration: Any = DEFAULT_DURATION):
        self.cache = cache
        self.ttl = parse_duration(duration)

    async def respond(
        self,
        request: Request,
        principal_id: Optional[str],
        compute: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, str]:
        key = response_cache_key(request, principal_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached, "HIT"

        payload = await compute()
        await self.cache.set(key, payload, self.ttl)
        return payload, "MISS"
