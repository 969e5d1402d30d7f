"""Post, boost and reaction write paths that keep feed caches coherent."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from database import async_session_maker
from models.post import Post, PostMedia, PostVisibility
from models.post_boost import BoostStatus, PostBoost
from models.reaction import Reaction
from services.feed_repository import LIKE_REACTION, POST_TARGET
from services.feed_service import FeedService

logger = logging.getLogger(__name__)

OPEN_BOOST_STATUSES = (
    BoostStatus.ACTIVE.value,
    BoostStatus.PAUSE.value,
    BoostStatus.PENDING_PAYMENT.value,
)
SUPERSEDED_BOOST_STATUSES = (BoostStatus.ACTIVE.value, BoostStatus.PAUSE.value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_post(post: Post, media_urls: List[str]) -> Dict[str, Any]:
    return {
        "id": post.id,
        "user_id": post.user_id,
        "content": post.content,
        "feeling": post.feeling,
        "visibility": post.visibility,
        "location": {
            "name": post.location_name,
            "city": post.location_city,
            "country": post.location_country,
        },
        "media": media_urls,
        "created_at": _iso(post.created_at),
    }


def _serialize_boost(boost: PostBoost) -> Dict[str, Any]:
    return {
        "id": boost.id,
        "post_id": boost.post_id,
        "user_id": boost.user_id,
        "days": boost.days,
        "status": boost.status,
        "city": boost.city,
        "country": boost.country,
        "expires_at": _iso(boost.expires_at),
        "created_at": _iso(boost.created_at),
    }


async def _get_live_post(post_id: str, db: AsyncSession) -> Post:
    result = await db.execute(select(Post).where(Post.id == post_id, Post.is_deleted.is_(False)))
    post = result.scalar_one_or_none()
    if post is None:
        raise LookupError("Post not found.")
    return post


async def _get_boost(boost_id: str, db: AsyncSession) -> PostBoost:
    result = await db.execute(select(PostBoost).where(PostBoost.id == boost_id))
    boost = result.scalar_one_or_none()
    if boost is None:
        raise LookupError("Boost not found.")
    return boost


async def create_post_service(
    user_id: str,
    db: AsyncSession,
    feed_service: FeedService,
    *,
    content: Optional[str] = None,
    visibility: str = PostVisibility.PUBLIC.value,
    feeling: Optional[str] = None,
    media_urls: Optional[List[str]] = None,
    location_name: Optional[str] = None,
    location_city: Optional[str] = None,
    location_country: Optional[str] = None,
) -> Dict[str, Any]:
    urls = [url.strip() for url in (media_urls or []) if url and url.strip()]
    if not (content or "").strip() and not urls:
        raise ValueError("A post needs text content or at least one media item.")

    post = Post(
        id=str(uuid.uuid4()),
        user_id=user_id,
        content=content,
        feeling=feeling,
        visibility=visibility,
        location_name=location_name,
        location_city=location_city,
        location_country=location_country,
        is_deleted=False,
        view_count=0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(post)
    for order, url in enumerate(urls):
        db.add(PostMedia(post_id=post.id, media_url=url, order=order))
    await db.commit()

    await feed_service.on_post_created(user_id, city=location_city, country=location_country)
    logger.info("post_created user=%s post=%s media=%d", user_id, post.id, len(urls))
    return _serialize_post(post, urls)


async def create_post_boost_service(
    user_id: str,
    post_id: str,
    db: AsyncSession,
    *,
    days: int,
    city: Optional[str] = None,
    country: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a boost awaiting payment; activation happens once payment clears."""
    post = await _get_live_post(post_id, db)
    if post.user_id != user_id:
        raise PermissionError("Only the post author can boost this post.")

    existing = await db.execute(
        select(PostBoost.id).where(PostBoost.post_id == post_id, PostBoost.status.in_(OPEN_BOOST_STATUSES))
    )
    if existing.first() is not None:
        raise ValueError("A boost is already active or pending for this post.")

    now = datetime.now(timezone.utc)
    boost = PostBoost(
        id=str(uuid.uuid4()),
        post_id=post_id,
        user_id=user_id,
        days=int(days),
        status=BoostStatus.PENDING_PAYMENT.value,
        city=city,
        country=country,
        created_at=now,
        expires_at=now + timedelta(days=int(days)),
    )
    db.add(boost)
    await db.commit()
    logger.info("boost_created user=%s post=%s boost=%s country=%s", user_id, post_id, boost.id, country)
    return _serialize_boost(boost)


async def activate_boost_service(
    boost_id: str,
    db: AsyncSession,
    feed_service: FeedService,
    *,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    boost = await _get_boost(boost_id, db)
    if user_id is not None and boost.user_id != user_id:
        raise PermissionError("Only the boost owner can activate this boost.")

    now = datetime.now(timezone.utc)
    superseded = await db.execute(
        select(PostBoost).where(
            PostBoost.post_id == boost.post_id,
            PostBoost.id != boost.id,
            PostBoost.status.in_(SUPERSEDED_BOOST_STATUSES),
        )
    )
    for other in superseded.scalars().all():
        other.status = BoostStatus.EXPIRED.value

    boost.status = BoostStatus.ACTIVE.value
    boost.created_at = now
    boost.expires_at = now + timedelta(days=int(boost.days or 1))
    # Expiring the others and activating this one commit together.
    await db.commit()

    await feed_service.on_boost_activated(boost.country, city=boost.city)
    logger.info("boost_activated boost=%s post=%s country=%s", boost.id, boost.post_id, boost.country)
    return _serialize_boost(boost)


async def update_boost_status_service(boost_id: str, status: str, db: AsyncSession, *, user_id: str) -> Dict[str, Any]:
    if status == BoostStatus.ACTIVE.value:
        raise ValueError("Use the activate endpoint for activation.")
    if status not in {member.value for member in BoostStatus}:
        raise ValueError(f"Unknown boost status: {status}")

    boost = await _get_boost(boost_id, db)
    if boost.user_id != user_id:
        raise PermissionError("Only the boost owner can change this boost.")
    boost.status = status
    await db.commit()
    return _serialize_boost(boost)


async def set_post_reaction_service(
    user_id: str,
    post_id: str,
    db: AsyncSession,
    feed_service: FeedService,
    *,
    reaction_type: str = LIKE_REACTION,
) -> Dict[str, Any]:
    await _get_live_post(post_id, db)
    result = await db.execute(
        select(Reaction).where(
            Reaction.user_id == user_id,
            Reaction.target_type == POST_TARGET,
            Reaction.target_id == post_id,
        )
    )
    reaction = result.scalar_one_or_none()
    previous_type = reaction.reaction_type if reaction else None
    if reaction is None:
        reaction = Reaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            target_type=POST_TARGET,
            target_id=post_id,
            reaction_type=reaction_type,
            created_at=datetime.now(timezone.utc),
        )
        db.add(reaction)
    else:
        reaction.reaction_type = reaction_type
    await db.commit()

    if LIKE_REACTION in (reaction_type, previous_type):
        await feed_service.on_reaction_changed(user_id)
    return {"post_id": post_id, "reaction_type": reaction_type, "previous_type": previous_type}


async def remove_post_reaction_service(
    user_id: str,
    post_id: str,
    db: AsyncSession,
    feed_service: FeedService,
) -> Dict[str, Any]:
    result = await db.execute(
        select(Reaction).where(
            Reaction.user_id == user_id,
            Reaction.target_type == POST_TARGET,
            Reaction.target_id == post_id,
        )
    )
    reaction = result.scalar_one_or_none()
    if reaction is None:
        raise LookupError("Reaction not found.")
    removed_type = reaction.reaction_type
    await db.delete(reaction)
    await db.commit()

    if removed_type == LIKE_REACTION:
        await feed_service.on_reaction_changed(user_id)
    return {"post_id": post_id, "removed": True, "reaction_type": removed_type}


async def expire_stale_boosts_service(
    feed_service: FeedService,
    session_maker: Optional[async_sessionmaker] = None,
) -> int:
    """Mark active boosts past their expiry as expired and drop the boosted pools."""
    now = datetime.now(timezone.utc)
    async with (session_maker or async_session_maker)() as db:
        result = await db.execute(
            select(PostBoost).where(
                PostBoost.status == BoostStatus.ACTIVE.value,
                PostBoost.expires_at < now,
            )
        )
        boosts = result.scalars().all()
        for boost in boosts:
            boost.status = BoostStatus.EXPIRED.value
        if boosts:
            await db.commit()
            await feed_service.invalidate_boosted_pools()
            logger.info("Expired %d boost(s): %s", len(boosts), [boost.id for boost in boosts])
        return len(boosts)
