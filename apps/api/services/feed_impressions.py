"""Seen-boosts ledger used to rotate boosted inventory across requests."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from config import settings
from services import feed_cache_keys as keys
from services.cache_store import CacheStore
from services.feed_records import FeedItem, FeedType, SeenBoostsRecord, load_record

logger = logging.getLogger(__name__)


class ImpressionLedger:
    """
    Bounded FIFO of boosted post ids a user has been served.

    The ledger filters candidates; it does not guarantee exactly-once
    delivery. Expiry or eviction may re-show an item.
    """

    def __init__(self, cache: CacheStore, cap: Optional[int] = None, ttl: Optional[int] = None):
        self.cache = cache
        self.cap = int(cap or settings.FEED_SEEN_BOOSTS_CAP)
        self.ttl = int(ttl or settings.FEED_SEEN_BOOSTS_TTL_SECONDS)

    async def get_seen_boosts(self, user_id: str) -> List[str]:
        record = load_record(SeenBoostsRecord, await self.cache.get(keys.seen_boosts(user_id)))
        return list(record.post_ids) if record else []

    async def add_seen_boost(self, user_id: str, post_id: str) -> bool:
        """Append `post_id` to the ledger, dropping the oldest entries past the cap."""
        seen = await self.get_seen_boosts(user_id)
        if post_id in seen:
            return True
        seen.append(post_id)
        return await self.cache.set(
            keys.seen_boosts(user_id),
            SeenBoostsRecord(post_ids=seen[-self.cap:]).to_cache(),
            self.ttl,
        )

    async def record_served_boosts(self, user_id: str, items: Iterable[FeedItem]) -> int:
        """Record every boosted item in a served page. Failures are logged, never raised."""
        recorded = 0
        for item in items:
            if item.feed_type != FeedType.BOOSTED:
                continue
            try:
                if await self.add_seen_boost(user_id, item.id):
                    recorded += 1
            except Exception as exc:
                logger.warning("Failed to record boost impression user=%s post=%s: %s", user_id, item.id, exc)
        return recorded
