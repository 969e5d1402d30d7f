"""Per-client request quotas backed by the shared cache store."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request

from services import feed_cache_keys as keys
from services.cache_store import CacheStore


_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()
_store: Optional[CacheStore] = None


def _quota_store() -> CacheStore:
    global _store
    if _store is None:
        _store = CacheStore()
    return _store


def _client_identifier(request: Request) -> str:
    # The socket peer wins; the header is client-controlled.
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return "unknown"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        _local_counters[key] = (count + 1, reset_at)
        return count + 1 <= limit


def rate_limit(prefix: str, limit: int, window_seconds: int = 60) -> Callable[[Request], Awaitable[None]]:
    """Return a dependency rejecting clients over `limit` requests per window with 429."""

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = keys.rate_limit(prefix, _client_identifier(request))
        store = getattr(request.app.state, "cache_store", None) or _quota_store()
        current = await store.incr(key, ttl=window_seconds)
        # Counter unavailable: fall back to an in-process window.
        allowed = current <= limit if current is not None else await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
            )

    return _dependency
