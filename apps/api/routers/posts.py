"""Post, boost and reaction router."""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.feed_service import FeedService, get_feed_service
from services.posts import (
    activate_boost_service,
    create_post_boost_service,
    create_post_service,
    remove_post_reaction_service,
    set_post_reaction_service,
    update_boost_status_service,
)

router = APIRouter()


class CreatePostRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=5000)
    visibility: Literal["public", "friends", "private"] = "public"
    feeling: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list, max_length=10)
    location_name: Optional[str] = None
    location_city: Optional[str] = None
    location_country: Optional[str] = None


class CreateBoostRequest(BaseModel):
    days: int = Field(ge=1, le=30)
    city: Optional[str] = None
    country: Optional[str] = None


class UpdateBoostStatusRequest(BaseModel):
    status: Literal["pause", "pending_payment", "expired", "cancelled"]


class ReactionRequest(BaseModel):
    reaction_type: str = Field(default="like", min_length=1, max_length=20)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.post("", status_code=201)
async def create_post(
    request: CreatePostRequest,
    _rate_limit: None = Depends(rate_limit("post_create", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    feed_service: FeedService = Depends(get_feed_service),
):
    try:
        return await create_post_service(auth.user_id, db, feed_service, **request.model_dump())
    except ValueError as exc:
        raise _http_error(exc) from exc


@router.post("/{post_id}/boosts", status_code=201)
async def create_post_boost(
    post_id: str,
    request: CreateBoostRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await create_post_boost_service(
            auth.user_id,
            post_id,
            db,
            days=request.days,
            city=request.city,
            country=request.country,
        )
    except (LookupError, PermissionError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.post("/boosts/{boost_id}/activate")
async def activate_boost(
    boost_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    feed_service: FeedService = Depends(get_feed_service),
):
    try:
        return await activate_boost_service(boost_id, db, feed_service, user_id=auth.user_id)
    except (LookupError, PermissionError) as exc:
        raise _http_error(exc) from exc


@router.patch("/boosts/{boost_id}")
async def update_boost_status(
    boost_id: str,
    request: UpdateBoostStatusRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await update_boost_status_service(boost_id, request.status, db, user_id=auth.user_id)
    except (LookupError, PermissionError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.post("/{post_id}/reactions")
async def react_to_post(
    post_id: str,
    request: ReactionRequest,
    _rate_limit: None = Depends(rate_limit("post_react", limit=600, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    feed_service: FeedService = Depends(get_feed_service),
):
    try:
        return await set_post_reaction_service(
            auth.user_id,
            post_id,
            db,
            feed_service,
            reaction_type=request.reaction_type,
        )
    except LookupError as exc:
        raise _http_error(exc) from exc


@router.delete("/{post_id}/reactions")
async def remove_post_reaction(
    post_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    feed_service: FeedService = Depends(get_feed_service),
):
    try:
        return await remove_post_reaction_service(auth.user_id, post_id, db, feed_service)
    except LookupError as exc:
        raise _http_error(exc) from exc
