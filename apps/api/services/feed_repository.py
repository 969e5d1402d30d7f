"""Read-side repositories over the relational store used by feed composition."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from database import async_session_maker
from models.friendship import Friendship, FriendshipStatus
from models.post import Post, PostVisibility
from models.post_boost import BoostStatus, PostBoost
from models.reaction import Reaction
from models.user_location import UserLocation
from services.feed_records import BoostTargeting, FeedAuthor, FeedItem, FeedMedia


LIKE_REACTION = "like"
POST_TARGET = "post"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def post_to_feed_item(post: Post, boost: Optional[PostBoost] = None) -> FeedItem:
    author = post.author
    return FeedItem(
        id=post.id,
        user_id=post.user_id,
        content=post.content,
        feeling=post.feeling,
        visibility=post.visibility,
        location_name=post.location_name,
        view_count=int(post.view_count or 0),
        created_at=_iso(post.created_at),
        author=(
            FeedAuthor(
                id=author.id,
                username=author.username,
                first_name=author.first_name,
                last_name=author.last_name,
                profile_picture=author.profile_picture,
            )
            if author is not None
            else None
        ),
        media=[
            FeedMedia(media_url=media.media_url, media_type=media.media_type, order=int(media.order or 0))
            for media in post.media
        ],
        boost=(
            BoostTargeting(
                boost_id=boost.id,
                city=boost.city,
                country=boost.country,
                expires_at=_iso(boost.expires_at),
            )
            if boost is not None
            else None
        ),
    )


def _post_query():
    return select(Post).options(selectinload(Post.media), selectinload(Post.author))


class _Repository:
    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or async_session_maker

    def _session(self) -> AsyncSession:
        return self._session_maker()


class ContentRepository(_Repository):
    """Post queries: by author set, by id set, active boosts, and reaction joins."""

    async def fetch_posts_by_authors(
        self,
        author_ids: Sequence[str],
        visibilities: Sequence[str],
        limit: int,
    ) -> List[FeedItem]:
        if not author_ids or limit <= 0:
            return []
        async with self._session() as db:
            result = await db.execute(
                _post_query()
                .where(
                    Post.user_id.in_(list(author_ids)),
                    Post.is_deleted.is_(False),
                    Post.visibility.in_(list(visibilities)),
                )
                .order_by(Post.created_at.desc())
                .limit(limit)
            )
            return [post_to_feed_item(post) for post in result.scalars().all()]

    async def fetch_active_boosted_posts(self, country: str, now: datetime, limit: int) -> List[FeedItem]:
        async with self._session() as db:
            result = await db.execute(
                select(Post, PostBoost)
                .join(PostBoost, PostBoost.post_id == Post.id)
                .options(selectinload(Post.media), selectinload(Post.author))
                .where(
                    PostBoost.status == BoostStatus.ACTIVE.value,
                    PostBoost.country == country,
                    PostBoost.expires_at > now,
                    Post.is_deleted.is_(False),
                )
                .order_by(Post.created_at.desc())
                .limit(limit)
            )
            return [post_to_feed_item(post, boost) for post, boost in result.all()]

    async def fetch_recent_likes(self, user_ids: Sequence[str], limit: int) -> List[Tuple[str, Optional[datetime]]]:
        """Return (post_id, liked_at) for the most recent likes by `user_ids`."""
        if not user_ids or limit <= 0:
            return []
        async with self._session() as db:
            result = await db.execute(
                select(Reaction.target_id, Reaction.created_at)
                .where(
                    Reaction.user_id.in_(list(user_ids)),
                    Reaction.target_type == POST_TARGET,
                    Reaction.reaction_type == LIKE_REACTION,
                )
                .order_by(Reaction.created_at.desc())
                .limit(limit)
            )
            return [(row.target_id, row.created_at) for row in result.all()]

    async def fetch_public_posts_by_ids(
        self,
        post_ids: Sequence[str],
        exclude_author_ids: Iterable[str],
        limit: int,
    ) -> List[FeedItem]:
        if not post_ids or limit <= 0:
            return []
        excluded = list(exclude_author_ids)
        query = _post_query().where(
            Post.id.in_(list(post_ids)),
            Post.is_deleted.is_(False),
            Post.visibility == PostVisibility.PUBLIC.value,
        )
        if excluded:
            query = query.where(Post.user_id.not_in(excluded))
        async with self._session() as db:
            result = await db.execute(query.limit(limit))
            return [post_to_feed_item(post) for post in result.scalars().all()]

    async def fetch_recent_public_posts(self, limit: int, exclude_author_ids: Iterable[str] = ()) -> List[FeedItem]:
        excluded = list(exclude_author_ids)
        query = _post_query().where(
            Post.is_deleted.is_(False),
            Post.visibility == PostVisibility.PUBLIC.value,
        )
        if excluded:
            query = query.where(Post.user_id.not_in(excluded))
        async with self._session() as db:
            result = await db.execute(query.order_by(Post.created_at.desc()).limit(limit))
            return [post_to_feed_item(post) for post in result.scalars().all()]

    async def count_posts_by_authors(self, author_ids: Sequence[str], visibilities: Sequence[str]) -> int:
        if not author_ids:
            return 0
        async with self._session() as db:
            result = await db.execute(
                select(func.count(Post.id)).where(
                    Post.user_id.in_(list(author_ids)),
                    Post.is_deleted.is_(False),
                    Post.visibility.in_(list(visibilities)),
                )
            )
            return int(result.scalar() or 0)

    async def count_active_boosted_posts(
        self,
        country: str,
        now: datetime,
        exclude_post_ids: Iterable[str] = (),
    ) -> int:
        excluded = list(exclude_post_ids)
        query = (
            select(func.count(func.distinct(Post.id)))
            .select_from(Post)
            .join(PostBoost, PostBoost.post_id == Post.id)
            .where(
                PostBoost.status == BoostStatus.ACTIVE.value,
                PostBoost.country == country,
                PostBoost.expires_at > now,
                Post.is_deleted.is_(False),
            )
        )
        if excluded:
            query = query.where(Post.id.not_in(excluded))
        async with self._session() as db:
            result = await db.execute(query)
            return int(result.scalar() or 0)

    async def count_likes(self, user_ids: Sequence[str]) -> int:
        if not user_ids:
            return 0
        async with self._session() as db:
            result = await db.execute(
                select(func.count(Reaction.id)).where(
                    Reaction.user_id.in_(list(user_ids)),
                    Reaction.target_type == POST_TARGET,
                    Reaction.reaction_type == LIKE_REACTION,
                )
            )
            return int(result.scalar() or 0)

    async def count_public_posts(self, exclude_author_ids: Iterable[str] = ()) -> int:
        excluded = list(exclude_author_ids)
        query = select(func.count(Post.id)).where(
            Post.is_deleted.is_(False),
            Post.visibility == PostVisibility.PUBLIC.value,
        )
        if excluded:
            query = query.where(Post.user_id.not_in(excluded))
        async with self._session() as db:
            result = await db.execute(query)
            return int(result.scalar() or 0)


class SocialGraphRepository(_Repository):
    async def fetch_accepted_friendships(self, user_id: str) -> List[Tuple[str, str]]:
        """Return (requester_id, addressee_id) for accepted edges touching `user_id`."""
        async with self._session() as db:
            result = await db.execute(
                select(Friendship.requester_id, Friendship.addressee_id).where(
                    or_(Friendship.requester_id == user_id, Friendship.addressee_id == user_id),
                    Friendship.status == FriendshipStatus.ACCEPTED.value,
                )
            )
            return [(row.requester_id, row.addressee_id) for row in result.all()]


class LocationRepository(_Repository):
    async def fetch_latest_active_location(self, user_id: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
        """Return (city, country) of the most recent active location, or None."""
        async with self._session() as db:
            result = await db.execute(
                select(UserLocation.city, UserLocation.country)
                .where(UserLocation.user_id == user_id, UserLocation.is_active.is_(True))
                .order_by(UserLocation.created_at.desc())
                .limit(1)
            )
            row = result.first()
            if row is None:
                return None
            return row.city, row.country
