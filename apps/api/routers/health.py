"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.feed_service import FeedService, get_feed_service

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    feed_service: FeedService = Depends(get_feed_service),
):
    """
    Report database and cache reachability.
    A cache outage only degrades the status; feeds are still served from the store.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "cache": "unknown",
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        await feed_service.cache.ping()
        health_status["cache"] = "up"
    except Exception as e:
        health_status["cache"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
