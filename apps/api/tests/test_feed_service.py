import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.future import select

from conftest import FakeCacheStore
from models.friendship import Friendship
from models.post import Post
from models.post_boost import PostBoost
from models.reaction import Reaction
from models.user import User
from models.user_location import UserLocation
from services import feed_cache_keys as keys
from services.cache_store import CacheStore
from services.feed_impressions import ImpressionLedger
from services.feed_records import FeedItem, FeedPageResult, FeedType
from services.feed_repository import ContentRepository, LocationRepository, SocialGraphRepository
from services.feed_service import FeedService, FeedValidationError
from services.feed_totals import estimate_total


NOW = datetime.now(timezone.utc)


def _user(user_id):
    return User(id=user_id, username=user_id)


def _post(post_id, user_id, minutes_ago=0, visibility="public"):
    return Post(
        id=post_id,
        user_id=user_id,
        content=f"post {post_id}",
        visibility=visibility,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


def _friends(requester_id, addressee_id, status="accepted"):
    return Friendship(requester_id=requester_id, addressee_id=addressee_id, status=status)


def _boost(boost_id, post_id, user_id, country="US", status="active", expires_in=timedelta(days=3)):
    return PostBoost(
        id=boost_id,
        post_id=post_id,
        user_id=user_id,
        days=3,
        status=status,
        city="Austin",
        country=country,
        created_at=NOW,
        expires_at=NOW + expires_in,
    )


def _location(user_id, city="Austin", country="US"):
    return UserLocation(user_id=user_id, city=city, country=country, created_at=NOW)


def _like(user_id, post_id, minutes_ago=0):
    return Reaction(
        user_id=user_id,
        target_type="post",
        target_id=post_id,
        reaction_type="like",
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


async def _seed(session_maker, *rows):
    async with session_maker() as session:
        session.add_all(list(rows))
        await session.commit()


def _types(result):
    return [post["feed_type"] for post in result["posts"]]


@pytest.mark.asyncio
async def test_isolated_viewer_gets_recent_public_posts(feed_service, session_maker, cache):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("stranger"),
        *[_post(f"p{index}", "stranger", minutes_ago=index) for index in range(15)],
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert [post["id"] for post in result["posts"]] == [f"p{index}" for index in range(10)]
    assert set(_types(result)) == {"public"}
    assert result["total"] == 15
    assert result["total_pages"] == 2
    assert result["has_more"] is True
    assert result["composition"]["cached"] is False
    assert cache.keys("feed:user:viewer:*") == ["feed:user:viewer:1"]


@pytest.mark.asyncio
async def test_cached_page_skips_every_store_read(feed_service, session_maker):
    await _seed(session_maker, _user("viewer"), _user("stranger"), _post("p1", "stranger"))
    first = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    content = feed_service.content
    with patch.object(content, "fetch_recent_public_posts", new_callable=AsyncMock) as public_spy, patch.object(
        content, "count_public_posts", new_callable=AsyncMock
    ) as count_spy, patch.object(
        feed_service.sources.social_graph, "fetch_accepted_friendships", new_callable=AsyncMock
    ) as graph_spy, patch.object(
        feed_service.sources.locations, "fetch_latest_active_location", new_callable=AsyncMock
    ) as location_spy:
        second = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert second["composition"] == {"cached": True, "page": 1, "has_more": False}
    assert second["posts"] == first["posts"]
    public_spy.assert_not_called()
    count_spy.assert_not_called()
    graph_spy.assert_not_called()
    location_spy.assert_not_called()


@pytest.mark.asyncio
async def test_stored_page_is_returned_unchanged(feed_service, cache):
    cached_item = FeedItem(id="c1", user_id="stranger", visibility="public", feed_type=FeedType.PUBLIC)
    await cache.set(
        keys.user_feed("viewer", 1),
        FeedPageResult(items=[cached_item], total=42, page=1, has_more=True).to_cache(),
        300,
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert [post["id"] for post in result["posts"]] == ["c1"]
    assert result["total"] == 42
    assert result["total_pages"] == 5
    assert result["has_more"] is True
    assert result["composition"]["cached"] is True


@pytest.mark.asyncio
async def test_stale_schema_entry_is_rebuilt(feed_service, session_maker, cache):
    await _seed(session_maker, _user("viewer"), _user("stranger"), _post("p1", "stranger"))
    await cache.set(keys.user_feed("viewer", 1), {"version": 99, "items": "junk"}, 300)

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert result["composition"]["cached"] is False
    assert [post["id"] for post in result["posts"]] == ["p1"]


@pytest.mark.asyncio
async def test_boosted_source_failure_still_serves_other_sources(feed_service, session_maker):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("friend"),
        _user("advertiser"),
        _friends("viewer", "friend"),
        _location("viewer"),
        *[_post(f"f{index}", "friend", minutes_ago=index) for index in range(4)],
        _post("ad1", "advertiser", minutes_ago=30),
        _boost("boost-1", "ad1", "advertiser"),
    )

    with patch.object(
        feed_service.content,
        "fetch_active_boosted_posts",
        new_callable=AsyncMock,
        side_effect=RuntimeError("boosted store down"),
    ):
        result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    ids = [post["id"] for post in result["posts"]]
    assert ids[:4] == ["f0", "f1", "f2", "f3"]
    assert "boosted" not in _types(result)


@pytest.mark.asyncio
async def test_viewer_without_location_gets_no_boosted_posts(feed_service, session_maker):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("advertiser"),
        *[_post(f"ad{index}", "advertiser", minutes_ago=index) for index in range(3)],
        *[_boost(f"boost-{index}", f"ad{index}", "advertiser") for index in range(3)],
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert "boosted" not in _types(result)
    assert result["composition"]["totals"]["boosted"] == 0


@pytest.mark.asyncio
async def test_boosts_are_interleaved_and_not_repeated(feed_service, session_maker, cache):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("friend"),
        _user("advertiser"),
        _friends("friend", "viewer"),
        _location("viewer"),
        *[_post(f"f{index}", "friend", minutes_ago=index) for index in range(1, 9)],
        _post("ad0", "advertiser", minutes_ago=20),
        _post("ad1", "advertiser", minutes_ago=21),
        _boost("boost-0", "ad0", "advertiser"),
        _boost("boost-1", "ad1", "advertiser"),
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert _types(result) == [
        "friends", "friends", "friends", "boosted",
        "friends", "friends", "friends", "boosted",
        "friends", "friends",
    ]
    assert result["posts"][3]["id"] == "ad0"
    assert result["posts"][7]["id"] == "ad1"
    assert result["posts"][3]["boost"]["country"] == "US"
    assert result["total"] == 12
    assert await feed_service.impressions.get_seen_boosts("viewer") == ["ad0", "ad1"]

    await cache.delete_pattern(keys.user_feed_pattern("viewer"))
    again = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert "boosted" not in _types(again)
    assert again["composition"]["totals"]["boosted"] == 0


@pytest.mark.asyncio
async def test_friend_liked_post_is_surfaced(feed_service, session_maker):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("friend"),
        _user("stranger"),
        _friends("viewer", "friend"),
        *[_post(f"f{index}", "friend", minutes_ago=index) for index in range(5)],
        _post("s1", "stranger", minutes_ago=60),
        _like("friend", "s1"),
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert result["posts"][4]["id"] == "s1"
    assert result["posts"][4]["feed_type"] == "friend_liked"
    assert [post["id"] for post in result["posts"]].count("s1") == 1
    assert result["total"] == 7


@pytest.mark.asyncio
async def test_consecutive_pages_do_not_overlap(feed_service, session_maker):
    await _seed(
        session_maker,
        _user("viewer"),
        _user("stranger"),
        *[_post(f"p{index}", "stranger", minutes_ago=index) for index in range(25)],
    )

    page_one = await feed_service.get_feed_posts("viewer", page=1, limit=10)
    page_two = await feed_service.get_feed_posts("viewer", page=2, limit=10)
    page_three = await feed_service.get_feed_posts("viewer", page=3, limit=10)

    assert [post["id"] for post in page_two["posts"]] == [f"p{index}" for index in range(10, 20)]
    assert [post["id"] for post in page_three["posts"]] == [f"p{index}" for index in range(20, 25)]
    assert not {post["id"] for post in page_one["posts"]} & {post["id"] for post in page_two["posts"]}
    assert page_three["has_more"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 51)])
async def test_invalid_page_request_is_rejected(feed_service, page, limit):
    with pytest.raises(FeedValidationError):
        await feed_service.get_feed_posts("viewer", page=page, limit=limit)


@pytest.mark.asyncio
async def test_location_store_failure_is_not_cached(feed_service, cache):
    with patch.object(
        feed_service.sources.locations,
        "fetch_latest_active_location",
        new_callable=AsyncMock,
        side_effect=RuntimeError("db down"),
    ):
        location = await feed_service.sources.get_user_location("viewer")

    assert location.country is None
    assert cache.keys("location:*") == []


@pytest.mark.asyncio
async def test_missing_location_is_cached(feed_service, session_maker, cache):
    await _seed(session_maker, _user("viewer"))

    location = await feed_service.sources.get_user_location("viewer")

    assert location.city is None and location.country is None
    assert cache.keys("location:*") == ["location:viewer"]


@pytest.mark.asyncio
async def test_cache_outage_still_serves_feed(session_maker):
    client = MagicMock()
    client.get = AsyncMock(side_effect=ConnectionError("cache down"))
    client.setex = AsyncMock(side_effect=ConnectionError("cache down"))
    client.delete = AsyncMock(side_effect=ConnectionError("cache down"))
    client.scan_iter = MagicMock(side_effect=ConnectionError("cache down"))
    service = FeedService(
        CacheStore(client=client),
        content=ContentRepository(session_maker),
        social_graph=SocialGraphRepository(session_maker),
        locations=LocationRepository(session_maker),
        timeout=5.0,
    )
    await _seed(
        session_maker,
        _user("viewer"),
        _user("stranger"),
        *[_post(f"p{index}", "stranger", minutes_ago=index) for index in range(3)],
    )

    result = await service.get_feed_posts("viewer", page=1, limit=10)

    assert [post["id"] for post in result["posts"]] == ["p0", "p1", "p2"]
    assert result["composition"]["cached"] is False
    assert await service.on_post_created("viewer") is True


@pytest.mark.asyncio
async def test_seen_ledger_keeps_latest_hundred(cache):
    ledger = ImpressionLedger(cache, cap=100, ttl=86400)
    for index in range(101):
        await ledger.add_seen_boost("viewer", f"p{index}")

    assert await ledger.get_seen_boosts("viewer") == [f"p{index}" for index in range(1, 101)]

    await ledger.add_seen_boost("viewer", "p50")
    seen = await ledger.get_seen_boosts("viewer")
    assert len(seen) == 100
    assert seen[0] == "p1"
    assert seen[-1] == "p100"


@pytest.mark.asyncio
async def test_seen_ledger_expires(cache):
    ledger = ImpressionLedger(cache, cap=100, ttl=86400)
    await ledger.add_seen_boost("viewer", "p1")

    cache.advance(86401)

    assert await ledger.get_seen_boosts("viewer") == []


def test_estimate_total_caps_boosted_and_friend_liked():
    assert estimate_total(5, 30, 12, 7) == 42
    assert estimate_total(10, 0, 0, 3) == 13
    assert estimate_total(0, 0, 0, 0) == 0
    assert estimate_total(0, 50, 50, 0) == 30


@pytest.mark.asyncio
async def test_post_created_clears_author_and_friend_pages(feed_service, session_maker, cache):
    await _seed(
        session_maker,
        _user("a"),
        _user("b"),
        _user("c"),
        _user("d"),
        _friends("a", "b"),
        _friends("c", "a"),
        _friends("a", "d", status="pending"),
    )
    for key in ["feed:user:a:1", "feed:user:b:1", "feed:user:b:2", "feed:user:c:1", "feed:user:d:1"]:
        await cache.set(key, {"version": 1}, 300)
    await cache.set("posts:popular", {"version": 1}, 900)
    await cache.set("posts:location:Austin:US:1", {"version": 1}, 600)

    assert await feed_service.on_post_created("a", city="Austin", country="US") is True

    assert cache.keys("feed:user:*") == ["feed:user:d:1"]
    assert cache.keys("posts:*") == []


@pytest.mark.asyncio
async def test_reaction_clears_friend_liked_pools_one_hop(feed_service, session_maker, cache):
    await _seed(
        session_maker,
        _user("a"),
        _user("b"),
        _user("c"),
        _friends("a", "b"),
        _friends("b", "c"),
    )
    await cache.set(keys.friend_liked_posts(["c", "a"]), {"version": 1, "posts": []}, 300)
    for key in ["feed:user:a:1", "feed:user:b:1", "feed:user:c:1"]:
        await cache.set(key, {"version": 1}, 300)

    assert await feed_service.on_reaction_changed("a") is True

    assert cache.keys("friend_liked_posts:*") == []
    assert cache.keys("feed:user:*") == ["feed:user:a:1", "feed:user:c:1"]


@pytest.mark.asyncio
async def test_boost_activation_flushes_feed_pages_and_target_pools(feed_service, cache):
    for key in ["feed:user:x:1", "feed:user:y:3", "boosted:US", "boosted:global", "boosted:CA"]:
        await cache.set(key, {"version": 1}, 300)

    assert await feed_service.on_boost_activated("US", city="Austin") is True

    assert cache.keys() == ["boosted:CA"]


@pytest.mark.asyncio
async def test_slow_boosted_source_times_out_without_blocking_feed(session_maker):
    service = FeedService(
        FakeCacheStore(),
        content=ContentRepository(session_maker),
        social_graph=SocialGraphRepository(session_maker),
        locations=LocationRepository(session_maker),
        timeout=0.2,
    )
    await _seed(
        session_maker,
        _user("viewer"),
        _user("friend"),
        _user("stranger"),
        _friends("viewer", "friend"),
        _location("viewer"),
        _post("f1", "friend", minutes_ago=1),
        _post("s1", "stranger", minutes_ago=2),
        _boost("b1", "s1", "stranger"),
    )

    async def stalled(*args, **kwargs):
        await asyncio.sleep(30)

    with patch.object(service.content, "fetch_active_boosted_posts", new=stalled):
        result = await asyncio.wait_for(service.get_feed_posts("viewer", page=1, limit=10), timeout=5)

    assert [post["id"] for post in result["posts"]] == ["f1", "s1"]
    assert _types(result) == ["friends", "public"]


@pytest.mark.asyncio
async def test_invalidation_hooks_report_failure_instead_of_raising(feed_service):
    with patch.object(feed_service, "invalidate_location_feeds", new_callable=AsyncMock, side_effect=RuntimeError("x")):
        assert await feed_service.on_boost_activated("US", city="Austin") is False
    with patch.object(feed_service.sources, "get_user_friends", new_callable=AsyncMock, side_effect=RuntimeError("x")):
        assert await feed_service.on_reaction_changed("a") is False
        assert await feed_service.on_post_created("a") is False


@pytest.mark.asyncio
async def test_friend_set_counterparts_are_resolved(feed_service, session_maker, cache):
    await _seed(
        session_maker,
        _user("a"),
        _user("b"),
        _user("c"),
        _friends("a", "b"),
        _friends("c", "a"),
        _friends("a", "a"),
    )

    friend_ids = await feed_service.sources.get_user_friends("a")

    assert sorted(friend_ids) == ["b", "c"]
    assert cache.keys("friends:*") == ["friends:a"]


@pytest.mark.asyncio
async def test_deleted_and_private_posts_are_not_served(feed_service, session_maker):
    deleted = _post("gone", "stranger", minutes_ago=1)
    deleted.is_deleted = True
    await _seed(
        session_maker,
        _user("viewer"),
        _user("stranger"),
        deleted,
        _post("secret", "stranger", minutes_ago=2, visibility="private"),
        _post("shown", "stranger", minutes_ago=3),
    )

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert [post["id"] for post in result["posts"]] == ["shown"]


@pytest.mark.asyncio
async def test_stored_posts_keep_their_author(feed_service, session_maker):
    await _seed(session_maker, _user("viewer"), _user("stranger"), _post("p1", "stranger"))

    result = await feed_service.get_feed_posts("viewer", page=1, limit=10)

    assert result["posts"][0]["author"]["username"] == "stranger"


@pytest.mark.asyncio
async def test_expired_boost_rows_are_not_candidates(session_maker):
    await _seed(
        session_maker,
        _user("advertiser"),
        _post("ad1", "advertiser"),
        _post("ad2", "advertiser"),
        _boost("live", "ad1", "advertiser"),
        _boost("stale", "ad2", "advertiser", expires_in=timedelta(hours=-1)),
    )
    content = ContentRepository(session_maker)

    posts = await content.fetch_active_boosted_posts("US", datetime.now(timezone.utc), 20)

    assert [post.id for post in posts] == ["ad1"]
    assert await content.count_active_boosted_posts("US", datetime.now(timezone.utc), ["ad1"]) == 0

    async with session_maker() as session:
        rows = (await session.execute(select(PostBoost.id).order_by(PostBoost.id))).scalars().all()
    assert rows == ["live", "stale"]
