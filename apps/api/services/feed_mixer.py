"""
Deterministic interleaving of the four feed sources.

Friends posts lead the page. Boosted posts are spliced in every
`BOOST_SPACING` slots starting at `BOOST_START_INDEX`, friend-liked posts
every `FRIEND_LIKED_SPACING` slots starting at `FRIEND_LIKED_START_INDEX`,
then public posts fill the remainder and leftover boosts pad sparse pages.

Insertion cursors are compared against the length of the page built so far,
so when an earlier source under-fills, later insertions compress toward the
front and never land past the end of the page.
"""

from __future__ import annotations

from typing import List, Sequence, Set

from services.feed_records import FeedItem, FeedType

BOOST_START_INDEX = 3
BOOST_SPACING = 4
FRIEND_LIKED_START_INDEX = 4
FRIEND_LIKED_SPACING = 5


def simple_feed_mix(
    friends: Sequence[FeedItem],
    boosted: Sequence[FeedItem],
    friend_liked: Sequence[FeedItem],
    public: Sequence[FeedItem],
    limit: int,
) -> List[FeedItem]:
    """Mix source pools into one page of at most `limit` unique posts."""
    if limit <= 0:
        return []

    result: List[FeedItem] = []
    placed: Set[str] = set()

    for post in friends:
        if len(result) >= limit:
            break
        if post.id in placed:
            continue
        result.append(post.tagged(FeedType.FRIENDS))
        placed.add(post.id)

    available_boosted: List[FeedItem] = []
    for post in boosted:
        if post.id in placed or any(candidate.id == post.id for candidate in available_boosted):
            continue
        available_boosted.append(post)

    boost_index = BOOST_START_INDEX
    while available_boosted and len(result) < limit:
        if len(result) < boost_index:
            break
        post = available_boosted.pop(0)
        result.insert(boost_index, post.tagged(FeedType.BOOSTED))
        placed.add(post.id)
        boost_index += BOOST_SPACING

    friend_liked_index = FRIEND_LIKED_START_INDEX
    for post in friend_liked:
        if post.id in placed:
            continue
        if len(result) >= friend_liked_index and len(result) < limit:
            result.insert(friend_liked_index, post.tagged(FeedType.FRIEND_LIKED))
            placed.add(post.id)
            friend_liked_index += FRIEND_LIKED_SPACING

    # A boosted candidate never shows up again as organic content.
    boosted_ids = {post.id for post in boosted}
    for post in public:
        if len(result) >= limit:
            break
        if post.id in boosted_ids or post.id in placed:
            continue
        result.append(post.tagged(FeedType.PUBLIC))
        placed.add(post.id)

    for post in available_boosted:
        if len(result) >= limit:
            break
        if post.id in placed:
            continue
        result.append(post.tagged(FeedType.BOOSTED))
        placed.add(post.id)

    return result[:limit]
