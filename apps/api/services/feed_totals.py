"""Approximate total item count for feed pagination."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import settings
from services.feed_records import UserLocationRecord
from services.feed_repository import ContentRepository
from services.feed_sources import FRIEND_VISIBILITIES, guarded


@dataclass(frozen=True)
class FeedTotals:
    friends: int
    boosted: int
    friend_liked: int
    public: int
    estimated_total: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_total(
    friends_count: int,
    boosted_count: int,
    friend_liked_count: int,
    public_count: int,
    boosted_cap: Optional[int] = None,
    friend_liked_cap: Optional[int] = None,
) -> int:
    """
    Upper-bound heuristic for the number of feed items.

    The caps are tunable; consumers must treat the estimate and any
    has-more signal derived from it as approximate.
    """
    boosted_cap = settings.FEED_ESTIMATE_BOOSTED_CAP if boosted_cap is None else boosted_cap
    friend_liked_cap = settings.FEED_ESTIMATE_FRIEND_LIKED_CAP if friend_liked_cap is None else friend_liked_cap
    return max(
        friends_count + min(boosted_count, boosted_cap) + min(friend_liked_count, friend_liked_cap) + public_count,
        max(friends_count, public_count),
    )


async def _zero() -> int:
    return 0


async def calculate_feed_totals(
    content: ContentRepository,
    user_id: str,
    friend_ids: List[str],
    location: UserLocationRecord,
    seen_boosts: List[str],
    now: datetime,
    timeout: Optional[float] = None,
) -> FeedTotals:
    """Count each source in parallel; a failing count reads as zero."""
    friends_count, boosted_count, friend_liked_count, public_count = await asyncio.gather(
        guarded(
            "Friends post count",
            content.count_posts_by_authors(friend_ids, FRIEND_VISIBILITIES) if friend_ids else _zero(),
            0,
            timeout,
        ),
        guarded(
            "Boosted post count",
            content.count_active_boosted_posts(location.country, now, seen_boosts) if location.country else _zero(),
            0,
            timeout,
        ),
        guarded(
            "Friend-liked count",
            content.count_likes(friend_ids) if friend_ids else _zero(),
            0,
            timeout,
        ),
        guarded(
            "Public post count",
            content.count_public_posts([user_id, *friend_ids]),
            0,
            timeout,
        ),
    )
    return FeedTotals(
        friends=friends_count,
        boosted=boosted_count,
        friend_liked=friend_liked_count,
        public=public_count,
        estimated_total=estimate_total(friends_count, boosted_count, friend_liked_count, public_count),
    )
