"""Cache key scheme for feed entities."""

from typing import Iterable


def user_feed(user_id: str, page: int) -> str:
    return f"feed:user:{user_id}:{page}"


def user_feed_pattern(user_id: str) -> str:
    return f"feed:user:{user_id}:*"


ALL_USER_FEEDS_PATTERN = "feed:user:*"


def user_location(user_id: str) -> str:
    return f"location:{user_id}"


def user_friends(user_id: str) -> str:
    return f"friends:{user_id}"


def boosted_posts(country: str) -> str:
    return f"boosted:{country}"


def global_boosted_posts() -> str:
    return "boosted:global"


ALL_BOOSTED_PATTERN = "boosted:*"


def location_posts_pattern(city: str, country: str) -> str:
    return f"posts:location:{city}:{country}:*"


def popular_posts() -> str:
    return "posts:popular"


POPULAR_POSTS_PATTERN = "posts:popular*"


def seen_boosts(user_id: str) -> str:
    return f"seen:boosts:{user_id}"


def friend_liked_posts(friend_ids: Iterable[str]) -> str:
    # Shared by every user whose friend set is identical.
    return f"friend_liked_posts:{','.join(sorted(friend_ids))}"


def rate_limit(prefix: str, client_id: str) -> str:
    return f"feed:rate:{prefix}:{client_id}"
