"""
Feed item and cached record schemas.

Every entity written to the cache tier is one of the records below. Each
record carries a `version`; a payload that fails validation or was written
with another version is read back as a miss.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, ClassVar, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class FeedType(str, Enum):
    FRIENDS = "friends"
    BOOSTED = "boosted"
    FRIEND_LIKED = "friend_liked"
    PUBLIC = "public"
    FALLBACK = "fallback"


class FeedAuthor(BaseModel):
    id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None


class FeedMedia(BaseModel):
    media_url: str
    media_type: str = "image"
    order: int = 0


class BoostTargeting(BaseModel):
    """Targeting metadata carried by boosted items."""
    boost_id: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    expires_at: Optional[str] = None


class FeedItem(BaseModel):
    id: str
    user_id: str
    content: Optional[str] = None
    feeling: Optional[str] = None
    visibility: str
    location_name: Optional[str] = None
    view_count: int = 0
    created_at: Optional[str] = None
    author: Optional[FeedAuthor] = None
    media: List[FeedMedia] = Field(default_factory=list)
    boost: Optional[BoostTargeting] = None
    feed_type: Optional[FeedType] = None

    def tagged(self, feed_type: FeedType) -> "FeedItem":
        return self.model_copy(update={"feed_type": feed_type})


class CachedRecord(BaseModel):
    SCHEMA_VERSION: ClassVar[int] = 1

    version: int = 1

    def to_cache(self) -> dict:
        payload = self.model_dump(mode="json")
        payload["version"] = self.SCHEMA_VERSION
        return payload


class UserLocationRecord(CachedRecord):
    city: Optional[str] = None
    country: Optional[str] = None


class FriendSetRecord(CachedRecord):
    user_ids: List[str] = Field(default_factory=list)


class SeenBoostsRecord(CachedRecord):
    post_ids: List[str] = Field(default_factory=list)


class PostPoolRecord(CachedRecord):
    """Shared pool of candidate posts (boosted per country, popular, friend-liked)."""
    posts: List[FeedItem] = Field(default_factory=list)


class FeedPageResult(CachedRecord):
    items: List[FeedItem] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    has_more: bool = False


RecordT = TypeVar("RecordT", bound=CachedRecord)


def load_record(record_type: Type[RecordT], raw: Any) -> Optional[RecordT]:
    """Validate a raw cache payload; schema drift reads as a miss."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Discarding %s cache payload of type %s", record_type.__name__, type(raw).__name__)
        return None
    if raw.get("version") != record_type.SCHEMA_VERSION:
        logger.warning(
            "Discarding %s cache payload with version %s (expected %s)",
            record_type.__name__,
            raw.get("version"),
            record_type.SCHEMA_VERSION,
        )
        return None
    try:
        return record_type.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Discarding invalid %s cache payload: %s", record_type.__name__, exc)
        return None
