"""
Personalized feed composition with a per-page cache.

A request first checks the (user, page) cache. On a miss it resolves the
viewer's location, friends and seen boosts concurrently, then fans out to the
total estimator and the four source fetchers, mixes the pools, records boost
impressions and writes the page back to the cache.

Invalidation hooks are called by the write side (post creation, boost
activation, reaction changes). They never raise.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import settings
from services import feed_cache_keys as keys
from services.cache_store import CacheStore
from services.feed_impressions import ImpressionLedger
from services.feed_mixer import simple_feed_mix
from services.feed_records import FeedItem, FeedPageResult, FeedType, UserLocationRecord, load_record
from services.feed_repository import ContentRepository, LocationRepository, SocialGraphRepository
from services.feed_sources import FeedSources, guarded, utc_now
from services.feed_totals import FeedTotals, calculate_feed_totals

logger = logging.getLogger(__name__)


class FeedValidationError(ValueError):
    """Request shape is invalid; never retried."""


def validate_page_request(page: int, limit: int) -> None:
    if page < 1:
        raise FeedValidationError("Page number must be greater than 0")
    if limit < 1:
        raise FeedValidationError("Limit must be greater than 0")
    if limit > settings.FEED_MAX_PAGE_SIZE:
        raise FeedValidationError(f"Limit cannot exceed {settings.FEED_MAX_PAGE_SIZE} posts per page")


def source_targets(page: int, limit: int) -> Dict[str, int]:
    """Per-source yield targets; deeper pages fetch more raw material."""
    buffer_multiplier = max(page * 2, 3)
    return {
        "friends": limit * buffer_multiplier,
        "boosted": min(page * 3, 10),
        "friend_liked": min(page * 5, 15),
        "public": limit * buffer_multiplier,
    }


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


class FeedService:
    def __init__(
        self,
        cache: CacheStore,
        content: Optional[ContentRepository] = None,
        social_graph: Optional[SocialGraphRepository] = None,
        locations: Optional[LocationRepository] = None,
        now: Optional[Callable[[], datetime]] = None,
        timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.now = now or utc_now
        self.timeout = float(timeout if timeout is not None else settings.FEED_SOURCE_TIMEOUT_SECONDS)
        self.sources = FeedSources(
            cache,
            content=content,
            social_graph=social_graph,
            locations=locations,
            now=self.now,
            timeout=self.timeout,
        )
        self.impressions = ImpressionLedger(cache)

    @property
    def content(self) -> ContentRepository:
        return self.sources.content

    # Branch guard covers a slow cache read plus a slow store read.
    @property
    def _branch_timeout(self) -> float:
        return self.timeout * 2

    async def get_feed_posts(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        validate_page_request(page, limit)

        cache_key = keys.user_feed(user_id, page)
        cached = load_record(FeedPageResult, await self.cache.get(cache_key))
        if cached is not None:
            logger.info("feed_cache_hit user=%s page=%s items=%s", user_id, page, len(cached.items))
            return self._response(
                cached.items,
                total=cached.total,
                page=page,
                limit=limit,
                composition={"cached": True, "page": page, "has_more": page * limit < cached.total},
            )

        location, friend_ids, seen_boosts = await asyncio.gather(
            guarded("User location", self.sources.get_user_location(user_id), UserLocationRecord(), self._branch_timeout),
            guarded("User friends", self.sources.get_user_friends(user_id), [], self._branch_timeout),
            guarded("Seen boosts", self.impressions.get_seen_boosts(user_id), [], self._branch_timeout),
        )

        targets = source_targets(page, limit)
        totals, friends_posts, boosted_posts, friend_liked_posts, public_posts = await asyncio.gather(
            guarded(
                "Feed totals",
                calculate_feed_totals(
                    self.content,
                    user_id,
                    friend_ids,
                    location,
                    seen_boosts,
                    self.now(),
                    timeout=self.timeout,
                ),
                FeedTotals(0, 0, 0, 0, 0),
                self._branch_timeout,
            ),
            guarded(
                "Friends posts",
                self.sources.get_friends_posts(friend_ids, targets["friends"]),
                [],
                self._branch_timeout,
            ),
            guarded(
                "Boosted posts",
                self.sources.get_boosted_posts(location, targets["boosted"], seen_boosts),
                [],
                self._branch_timeout,
            ),
            guarded(
                "Friend-liked posts",
                self.sources.get_friend_liked_posts(user_id, friend_ids, targets["friend_liked"]),
                [],
                self._branch_timeout,
            ),
            guarded(
                "Public posts",
                self.sources.get_public_posts(user_id, friend_ids, targets["public"]),
                [],
                self._branch_timeout,
            ),
        )

        window = simple_feed_mix(
            friends_posts,
            boosted_posts,
            friend_liked_posts,
            public_posts,
            limit=page * limit,
        )
        items = window[(page - 1) * limit : page * limit]

        await self.impressions.record_served_boosts(user_id, items)

        total = totals.estimated_total
        has_more = page * limit < total
        await self.cache.set(
            cache_key,
            FeedPageResult(items=items, total=total, page=page, has_more=has_more).to_cache(),
            settings.FEED_USER_PAGE_TTL_SECONDS,
        )

        counts = {
            "friends": len(friends_posts),
            "boosted": len(boosted_posts),
            "friend_liked": len(friend_liked_posts),
            "public": len(public_posts),
            "mixed": len(items),
            "requested": limit,
        }
        logger.info("feed_built user=%s page=%s counts=%s total=%s", user_id, page, counts, total)
        return self._response(
            items,
            total=total,
            page=page,
            limit=limit,
            composition={
                "cached": False,
                "page": page,
                "has_more": has_more,
                "total_pages": _total_pages(total, limit),
                "counts": counts,
                "served": {
                    feed_type.value: sum(1 for item in items if item.feed_type == feed_type)
                    for feed_type in FeedType
                },
                "totals": totals.as_dict(),
            },
        )

    def _response(
        self,
        items: List[FeedItem],
        *,
        total: int,
        page: int,
        limit: int,
        composition: Dict[str, Any],
    ) -> Dict[str, Any]:
        return {
            "posts": [item.model_dump(mode="json") for item in items],
            "total": total,
            "page": page,
            "total_pages": _total_pages(total, limit),
            "limit": limit,
            "has_more": page * limit < total,
            "composition": composition,
        }

    # ---- invalidation hooks ----

    async def invalidate_user_feed(self, user_id: str) -> int:
        return await self.cache.delete_pattern(keys.user_feed_pattern(user_id))

    async def invalidate_location_feeds(self, city: Optional[str], country: Optional[str]) -> None:
        # Location feed pages live in the shared cache tier but are written by other readers; only cleared here.
        if city and country:
            await self.cache.delete_pattern(keys.location_posts_pattern(city, country))
        if country:
            await self.cache.delete(keys.boosted_posts(country))

    async def invalidate_boosted_pools(self) -> int:
        deleted = await self.cache.delete(keys.global_boosted_posts())
        return deleted + await self.cache.delete_pattern(keys.ALL_BOOSTED_PATTERN)

    async def on_post_created(
        self,
        user_id: str,
        city: Optional[str] = None,
        country: Optional[str] = None,
    ) -> bool:
        """Clear the author's and friends' feed pages, the post's location caches and the popular pool."""
        try:
            await self.invalidate_user_feed(user_id)
            friend_ids = await self.sources.get_user_friends(user_id)
            await asyncio.gather(*(self.invalidate_user_feed(friend_id) for friend_id in friend_ids))
            if city and country:
                await self.invalidate_location_feeds(city, country)
            await self.cache.delete_pattern(keys.POPULAR_POSTS_PATTERN)
            logger.info("Invalidated feed caches for user %s and %d friends", user_id, len(friend_ids))
            return True
        except Exception as exc:
            logger.warning("Failed to invalidate feed caches for new post by %s: %s", user_id, exc)
            return False

    async def on_boost_activated(self, country: Optional[str], city: Optional[str] = None) -> bool:
        """Make new boosted inventory visible immediately by flushing every feed page."""
        try:
            await self.invalidate_location_feeds(city, country)
            await self.cache.delete(keys.global_boosted_posts())
            flushed = await self.cache.delete_pattern(keys.ALL_USER_FEEDS_PATTERN)
            logger.info("Invalidated boosted caches for country=%s and %d feed pages", country, flushed)
            return True
        except Exception as exc:
            logger.warning("Failed to invalidate caches after boost activation country=%s: %s", country, exc)
            return False

    async def on_reaction_changed(self, user_id: str) -> bool:
        """Clear friend-liked pools and feed pages of the reacting user's friends (one hop)."""
        try:
            friend_ids = await self.sources.get_user_friends(user_id)
            for friend_id in friend_ids:
                friends_of_friend = await self.sources.get_user_friends(friend_id)
                await self.cache.delete(keys.friend_liked_posts(friends_of_friend))
                await self.invalidate_user_feed(friend_id)
            logger.info("Invalidated friend-liked caches for user %s affecting %d friends", user_id, len(friend_ids))
            return True
        except Exception as exc:
            logger.warning("Failed to invalidate friend-liked caches for %s: %s", user_id, exc)
            return False


_default_service: Optional[FeedService] = None


def get_feed_service() -> FeedService:
    """FastAPI dependency returning the process-wide feed service."""
    global _default_service
    if _default_service is None:
        _default_service = FeedService(CacheStore())
    return _default_service
