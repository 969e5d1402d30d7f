import fnmatch
import json
import time

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from routers import rate_limit
from services.feed_repository import ContentRepository, LocationRepository, SocialGraphRepository
from services.feed_service import FeedService
from services.session_token import create_session_token


class FakeCacheStore:
    """In-memory stand-in for CacheStore with TTLs driven by a movable clock."""

    def __init__(self):
        self.values = {}
        self.expiry = {}
        self.clock = time.time()

    def advance(self, seconds):
        self.clock += seconds

    def _alive(self, key):
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self.clock:
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.values

    async def get(self, key):
        if not self._alive(key):
            return None
        return json.loads(self.values[key])

    async def set(self, key, value, ttl=None):
        self.values[key] = json.dumps(value, default=str)
        if ttl:
            self.expiry[key] = self.clock + ttl
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        deleted = 0
        for key in keys:
            if self._alive(key):
                deleted += 1
            self.values.pop(key, None)
            self.expiry.pop(key, None)
        return deleted

    async def delete_pattern(self, pattern):
        matches = [key for key in list(self.values) if fnmatch.fnmatchcase(key, pattern)]
        return await self.delete(*matches)

    async def incr(self, key, ttl=None):
        current = int(await self.get(key) or 0) + 1
        self.values[key] = json.dumps(current)
        if current == 1 and ttl:
            self.expiry[key] = self.clock + ttl
        return current

    async def ping(self):
        return True

    async def aclose(self):
        return None

    def keys(self, pattern="*"):
        return sorted(key for key in list(self.values) if self._alive(key) and fnmatch.fnmatchcase(key, pattern))


def auth_header(user_id):
    return {"Authorization": f"Bearer {create_session_token(user_id)}"}


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def cache():
    return FakeCacheStore()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'feed.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest.fixture
def feed_service(cache, session_maker):
    return FeedService(
        cache,
        content=ContentRepository(session_maker),
        social_graph=SocialGraphRepository(session_maker),
        locations=LocationRepository(session_maker),
        timeout=5.0,
    )
