"""Redis-backed key/value store used by the feed cache tier."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 500


class CacheStore:
    """
    JSON key/value store with TTLs.

    Every primitive degrades instead of raising: reads return None on error,
    writes and deletes return False/0. Callers can always fall back to the
    source of truth.
    """

    def __init__(self, client: Optional[redis.Redis] = None, redis_url: Optional[str] = None):
        self.client = client or redis.from_url(redis_url or settings.REDIS_URL, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except Exception as exc:
            logger.warning("Cache GET failed for key %s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Cache payload for key %s is not valid JSON", key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, separators=(",", ":"), ensure_ascii=True, default=str)
            if ttl:
                await self.client.setex(key, max(int(ttl), 1), payload)
            else:
                await self.client.set(key, payload)
            return True
        except Exception as exc:
            logger.warning("Cache SET failed for key %s: %s", key, exc)
            return False

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self.client.delete(*keys) or 0)
        except Exception as exc:
            logger.warning("Cache DELETE failed for %d key(s): %s", len(keys), exc)
            return 0

    async def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            batch = []
            async for key in self.client.scan_iter(match=pattern, count=DELETE_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    deleted += int(await self.client.delete(*batch) or 0)
                    batch = []
            if batch:
                deleted += int(await self.client.delete(*batch) or 0)
        except Exception as exc:
            logger.warning("Cache DELETE pattern failed for %s: %s", pattern, exc)
        return deleted

    async def incr(self, key: str, ttl: Optional[int] = None) -> Optional[int]:
        """Increment a counter, starting its TTL window on first increment."""
        try:
            current = int(await self.client.incr(key))
            if current == 1 and ttl:
                await self.client.expire(key, max(int(ttl), 1))
            return current
        except Exception as exc:
            logger.warning("Cache INCR failed for key %s: %s", key, exc)
            return None

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def aclose(self) -> None:
        await self.client.aclose()
