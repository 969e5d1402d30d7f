"""Personalized feed router."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.feed_records import FeedItem
from services.feed_service import FeedService, FeedValidationError, get_feed_service

logger = logging.getLogger(__name__)

router = APIRouter()


class FeedPageResponse(BaseModel):
    posts: List[FeedItem]
    total: int
    page: int
    total_pages: int
    limit: int
    has_more: bool
    composition: Dict[str, Any]


@router.get("", response_model=FeedPageResponse)
async def get_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=settings.FEED_MAX_PAGE_SIZE),
    _rate_limit: None = Depends(rate_limit("feed_read", limit=settings.FEED_RATE_LIMIT_PER_MINUTE, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    feed_service: FeedService = Depends(get_feed_service),
):
    try:
        return await feed_service.get_feed_posts(auth.user_id, page=page, limit=limit)
    except FeedValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Feed build failed for user %s page %s", auth.user_id, page)
        raise HTTPException(status_code=500, detail="Failed to build feed.") from exc
