"""
Social Feed API - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    feed,
    posts,
)
from services.feed_service import get_feed_service
from services.posts import expire_stale_boosts_service


async def _periodic_boost_expiration() -> None:
    interval_minutes = max(int(settings.BOOST_EXPIRATION_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            expired = await expire_stale_boosts_service(get_feed_service())
            if expired:
                print(f"⏳ Boost expiration tick: expired={expired}")
        except Exception as exc:
            print(f"⚠️ Boost expiration tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Social Feed API...")
    validate_security_settings()
    # Rate-limit counters share the feed cache connection.
    app.state.cache_store = get_feed_service().cache
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        expired = await expire_stale_boosts_service(get_feed_service())
        if expired:
            print(f"♻️ Expired {expired} stale boosts after startup.")
    except Exception as exc:
        print(f"⚠️ Startup boost expiration skipped: {exc}")
    expiration_task = None
    if int(settings.BOOST_EXPIRATION_INTERVAL_MINUTES) > 0:
        expiration_task = asyncio.create_task(_periodic_boost_expiration())
        print(
            "📅 Boost expiration loop enabled "
            f"(every {int(settings.BOOST_EXPIRATION_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if expiration_task is not None:
        expiration_task.cancel()
        try:
            await expiration_task
        except asyncio.CancelledError:
            pass
    await get_feed_service().cache.aclose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Social Feed API",
    description="Personalized social feeds mixing friends, boosted, friend-liked and public posts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Social Feed API",
        "version": "0.1.0",
        "status": "running"
    }
