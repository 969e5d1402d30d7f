"""Support and source fetchers for feed composition."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from config import settings
from models.post import PostVisibility
from services import feed_cache_keys as keys
from services.cache_store import CacheStore
from services.feed_records import (
    FeedItem,
    FriendSetRecord,
    PostPoolRecord,
    UserLocationRecord,
    load_record,
)
from services.feed_repository import ContentRepository, LocationRepository, SocialGraphRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

FRIENDS_POST_MULTIPLIER = 1.5
BOOSTED_POST_MULTIPLIER = 1.5
FRIEND_LIKED_REACTION_MULTIPLIER = 3
FRIEND_LIKED_POST_MULTIPLIER = 2
POPULAR_POST_MULTIPLIER = 2
FRIEND_VISIBILITIES = (PostVisibility.PUBLIC.value, PostVisibility.FRIENDS.value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def guarded(label: str, awaitable: Awaitable[T], default: T, timeout: Optional[float] = None) -> T:
    """Await a fan-out branch; errors and timeouts degrade to `default`."""
    try:
        if timeout and timeout > 0:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        return await awaitable
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %.2fs; degrading to default", label, timeout or 0)
        return default
    except Exception as exc:
        logger.warning("%s failed; degrading to default: %s", label, exc)
        return default


class FeedSources:
    """
    Cached reads of the feed inputs.

    Support fetchers resolve the viewer's location and friend set. Source
    fetchers return candidate pools for the mixer, each tagged by the mixer
    later. A store failure or timeout in any fetcher is logged and treated
    as an empty result.
    """

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
        self.content = content or ContentRepository()
        self.social_graph = social_graph or SocialGraphRepository()
        self.locations = locations or LocationRepository()
        self.now = now or utc_now
        self.timeout = float(timeout if timeout is not None else settings.FEED_SOURCE_TIMEOUT_SECONDS)

    async def _read(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    # ---- support fetchers ----

    async def get_user_location(self, user_id: str) -> UserLocationRecord:
        key = keys.user_location(user_id)
        cached = load_record(UserLocationRecord, await self.cache.get(key))
        if cached is not None:
            return cached

        try:
            row = await self._read(self.locations.fetch_latest_active_location(user_id))
        except Exception as exc:
            logger.warning("Failed to fetch user location for %s: %r", user_id, exc)
            return UserLocationRecord()

        location = UserLocationRecord(city=row[0], country=row[1]) if row else UserLocationRecord()
        await self.cache.set(key, location.to_cache(), settings.FEED_USER_LOCATION_TTL_SECONDS)
        return location

    async def get_user_friends(self, user_id: str) -> List[str]:
        key = keys.user_friends(user_id)
        cached = load_record(FriendSetRecord, await self.cache.get(key))
        if cached is not None:
            return list(cached.user_ids)

        try:
            edges = await self._read(self.social_graph.fetch_accepted_friendships(user_id))
        except Exception as exc:
            logger.warning("Failed to fetch user friends for %s: %r", user_id, exc)
            return []

        friend_ids: List[str] = []
        for requester_id, addressee_id in edges:
            counterpart = addressee_id if requester_id == user_id else requester_id
            if counterpart and counterpart != user_id and counterpart not in friend_ids:
                friend_ids.append(counterpart)

        await self.cache.set(
            key,
            FriendSetRecord(user_ids=friend_ids).to_cache(),
            settings.FEED_USER_FRIENDS_TTL_SECONDS,
        )
        return friend_ids

    # ---- source fetchers ----

    async def get_friends_posts(self, friend_ids: List[str], target_count: int) -> List[FeedItem]:
        if not friend_ids:
            return []
        try:
            return await self._read(
                self.content.fetch_posts_by_authors(
                    friend_ids,
                    FRIEND_VISIBILITIES,
                    limit=math.ceil(target_count * FRIENDS_POST_MULTIPLIER),
                )
            )
        except Exception as exc:
            logger.warning("Failed to fetch friends posts: %r", exc)
            return []

    async def get_boosted_posts(
        self,
        location: UserLocationRecord,
        target_count: int,
        seen_boosts: Iterable[str],
    ) -> List[FeedItem]:
        country = location.country
        if not country:
            return []

        # The per-country pool is shared; the seen filter is applied per viewer after the read.
        key = keys.boosted_posts(country)
        cached = load_record(PostPoolRecord, await self.cache.get(key))
        if cached is not None:
            pool = cached.posts
        else:
            try:
                pool = await self._read(
                    self.content.fetch_active_boosted_posts(country, self.now(), settings.FEED_BOOSTED_POOL_SIZE)
                )
            except Exception as exc:
                logger.warning("Failed to fetch boosted posts for country %s: %r", country, exc)
                return []
            await self.cache.set(key, PostPoolRecord(posts=pool).to_cache(), settings.FEED_BOOSTED_POSTS_TTL_SECONDS)

        seen = set(seen_boosts)
        unique: List[FeedItem] = []
        unique_ids = set()
        for post in pool:
            if post.id in unique_ids or post.id in seen:
                continue
            unique.append(post)
            unique_ids.add(post.id)
        return unique[: math.ceil(target_count * BOOSTED_POST_MULTIPLIER)]

    async def get_friend_liked_posts(
        self,
        user_id: str,
        friend_ids: List[str],
        target_count: int,
    ) -> List[FeedItem]:
        if not friend_ids:
            return []

        key = keys.friend_liked_posts(friend_ids)
        cached = load_record(PostPoolRecord, await self.cache.get(key))
        if cached is not None:
            pool = cached.posts
        else:
            try:
                likes = await self._read(
                    self.content.fetch_recent_likes(friend_ids, limit=target_count * FRIEND_LIKED_REACTION_MULTIPLIER)
                )
                liked_post_ids = list(dict.fromkeys(post_id for post_id, _ in likes))
                posts = await self._read(
                    self.content.fetch_public_posts_by_ids(
                        liked_post_ids,
                        exclude_author_ids=[user_id, *friend_ids],
                        limit=target_count * FRIEND_LIKED_POST_MULTIPLIER,
                    )
                )
            except Exception as exc:
                logger.warning("Failed to fetch friend-liked posts: %r", exc)
                return []

            # Most recently liked first.
            rank = {post_id: idx for idx, post_id in enumerate(liked_post_ids)}
            pool = sorted(posts, key=lambda post: rank.get(post.id, len(rank)))
            await self.cache.set(key, PostPoolRecord(posts=pool).to_cache(), settings.FEED_FRIEND_LIKED_TTL_SECONDS)

        # Users with identical friend sets share the pool, so drop the viewer's own posts here.
        return [post for post in pool if post.user_id != user_id]

    async def get_public_posts(self, user_id: str, friend_ids: List[str], target_count: int) -> List[FeedItem]:
        key = keys.popular_posts()
        cached = load_record(PostPoolRecord, await self.cache.get(key))
        if cached is not None:
            pool = cached.posts
        else:
            try:
                pool = await self._read(
                    self.content.fetch_recent_public_posts(
                        limit=max(target_count * POPULAR_POST_MULTIPLIER, settings.FEED_POPULAR_POOL_MIN_SIZE)
                    )
                )
            except Exception as exc:
                logger.warning("Failed to fetch public posts: %r", exc)
                return []
            await self.cache.set(key, PostPoolRecord(posts=pool).to_cache(), settings.FEED_POPULAR_POSTS_TTL_SECONDS)

        excluded = {user_id, *friend_ids}
        return [post for post in pool if post.user_id not in excluded]
