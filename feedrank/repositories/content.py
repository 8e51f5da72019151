"""
Content repository backed by the `posts` table.

Each finder opens its own session: the candidate retriever runs all five
sources concurrently and an AsyncSession must not be shared across tasks.
Every returned item is hydrated with its engagements and its author's social
graph so the scorer never needs another round-trip.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.models import Follow, Post, PostEngagement, User
from feedrank.ranking.geo import bounding_box, haversine_km
from feedrank.ranking.topics import item_topics
from feedrank.ranking.types import (
    Engagement,
    FeedItem,
    ItemLocation,
    Location,
    MediaRef,
    as_utc,
    naive_utc,
)

logger = logging.getLogger(__name__)

SOCIAL_VISIBILITY = ("public", "connections")

# Prefilter multipliers: SQL narrows by bounding box / substring, Python applies the exact test
_NEAR_OVERFETCH = 5
_TOPIC_OVERFETCH = 3


def _to_item(post: Post) -> FeedItem:
    location = None
    if post.latitude is not None and post.longitude is not None:
        location = ItemLocation(post.latitude, post.longitude, post.location_name)
    return FeedItem(
        item_id=post.post_id,
        author_id=post.user_id,
        created_at=as_utc(post.created_at),
        text=post.content or "",
        media=[
            MediaRef(m.get("type", "image"), m.get("size"), m.get("duration"))
            for m in (post.media or [])
        ],
        visibility=post.visibility,
        location=location,
        like_count=post.like_count,
        comment_count=post.comment_count,
        share_count=post.share_count,
        tags=list(post.tags or []),
    )


class SqlContentRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    def _active(self, since: datetime):
        return and_(Post.is_active.is_(True), Post.created_at >= naive_utc(since))

    async def _fetch(self, stmt) -> list[FeedItem]:
        async with self._sessions() as session:
            rows = await session.execute(stmt)
            posts = list(rows.scalars().all())
            return await self._hydrate(session, posts)

    async def _hydrate(self, session: AsyncSession, posts: list[Post]) -> list[FeedItem]:
        """Attach engagements, author follower/following sets and verification."""
        if not posts:
            return []
        items = [_to_item(p) for p in posts]
        post_ids = [i.item_id for i in items]
        author_ids = list({i.author_id for i in items})

        engagements: dict[str, list[Engagement]] = defaultdict(list)
        rows = await session.execute(
            select(PostEngagement.post_id, PostEngagement.user_id, PostEngagement.kind)
            .where(PostEngagement.post_id.in_(post_ids))
        )
        for post_id, user_id, kind in rows.all():
            engagements[post_id].append(Engagement(user_id, kind))

        followers: dict[str, set[str]] = defaultdict(set)
        following: dict[str, set[str]] = defaultdict(set)
        rows = await session.execute(
            select(Follow.follower_id, Follow.followee_id).where(
                or_(Follow.followee_id.in_(author_ids), Follow.follower_id.in_(author_ids))
            )
        )
        for follower_id, followee_id in rows.all():
            followers[followee_id].add(follower_id)
            following[follower_id].add(followee_id)

        rows = await session.execute(
            select(User.user_id).where(
                User.user_id.in_(author_ids), User.is_verified.is_(True)
            )
        )
        verified = {r[0] for r in rows.all()}

        for item in items:
            item.engagements = engagements.get(item.item_id, [])
            item.author_follower_ids = followers.get(item.author_id, set())
            item.author_following_ids = following.get(item.author_id, set())
            item.author_verified = item.author_id in verified
        return items

    # ─────────────────────── Candidate sources ────────────────────────────

    async def find_by_social_graph(
        self, author_ids: set[str], since: datetime, limit: int
    ) -> list[FeedItem]:
        if not author_ids:
            return []
        stmt = (
            select(Post)
            .where(
                self._active(since),
                Post.user_id.in_(list(author_ids)),
                Post.visibility.in_(SOCIAL_VISIBILITY),
            )
            .order_by(Post.created_at.desc())
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def find_popular(self, since: datetime, limit: int) -> list[FeedItem]:
        stmt = (
            select(Post)
            .where(self._active(since), Post.visibility == "public")
            .order_by(Post.like_count.desc(), Post.comment_count.desc())
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def find_near(
        self, location: Location, radius_km: float, since: datetime, limit: int
    ) -> list[FeedItem]:
        min_lat, max_lat, min_lon, max_lon = bounding_box(
            location.latitude, location.longitude, radius_km
        )
        stmt = (
            select(Post)
            .where(
                self._active(since),
                Post.visibility == "public",
                Post.latitude.between(min_lat, max_lat),
                Post.longitude.between(min_lon, max_lon),
            )
            .order_by(Post.created_at.desc())
            .limit(limit * _NEAR_OVERFETCH)
        )
        items = await self._fetch(stmt)
        by_distance = []
        for item in items:
            distance = haversine_km(
                location.latitude,
                location.longitude,
                item.location.latitude,
                item.location.longitude,
            )
            if distance <= radius_km:
                by_distance.append((distance, item))
        by_distance.sort(key=lambda pair: pair[0])
        return [item for _, item in by_distance[:limit]]

    async def find_by_topics(
        self, keywords: list[str], since: datetime, limit: int
    ) -> list[FeedItem]:
        if not keywords:
            return []
        wanted = {kw.lower() for kw in keywords}
        content = func.lower(Post.content)
        stmt = (
            select(Post)
            .where(
                self._active(since),
                Post.visibility == "public",
                or_(*[content.contains(kw, autoescape=True) for kw in sorted(wanted)]),
            )
            .order_by(Post.created_at.desc())
            .limit(limit * _TOPIC_OVERFETCH)
        )
        # Substring hits like "trust" for "rust" are dropped here
        items = [i for i in await self._fetch(stmt) if wanted.intersection(item_topics(i))]
        return items[:limit]

    async def find_trending(self, since: datetime, limit: int) -> list[FeedItem]:
        stmt = (
            select(Post)
            .where(self._active(since), Post.visibility == "public")
            .order_by(
                Post.like_count.desc(),
                Post.comment_count.desc(),
                Post.share_count.desc(),
            )
            .limit(limit)
        )
        return await self._fetch(stmt)

    # ─────────────────────── Fallback + lookups ───────────────────────────

    async def find_recent(
        self, author_ids: set[str], limit: int, offset: int = 0
    ) -> list[FeedItem]:
        stmt = (
            select(Post)
            .where(
                Post.is_active.is_(True),
                or_(
                    and_(
                        Post.user_id.in_(list(author_ids)),
                        Post.visibility.in_(SOCIAL_VISIBILITY),
                    ),
                    Post.visibility == "public",
                ),
            )
            .order_by(Post.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def get(self, item_id: str) -> Optional[FeedItem]:
        async with self._sessions() as session:
            post = await session.get(Post, item_id)
            if post is None:
                return None
            items = await self._hydrate(session, [post])
            return items[0]

    async def get_texts(self, item_ids: list[str]) -> dict[str, str]:
        if not item_ids:
            return {}
        async with self._sessions() as session:
            rows = await session.execute(
                select(Post.post_id, Post.content).where(Post.post_id.in_(item_ids))
            )
            return {post_id: content or "" for post_id, content in rows.all()}
