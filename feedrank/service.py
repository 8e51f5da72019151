"""
Service facade the HTTP routers talk to.

Wires the repositories, caches and clients into the ranking pipeline once at
startup (see `build_service`) and exposes the user-facing operations:
ranked feed, interaction tracking, feedback, analytics and preferences.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Request
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.clients.geocoder import GeocoderClient
from feedrank.clients.redis_client import RedisContentScoreStore
from feedrank.config import Settings
from feedrank.ranking.analytics import interaction_stats, topic_counts
from feedrank.ranking.assembler import FeedAssembler
from feedrank.ranking.background import BackgroundRunner
from feedrank.ranking.content_scores import ContentScoreAccessor
from feedrank.ranking.context import ContextBuilder
from feedrank.ranking.errors import NotFoundError
from feedrank.ranking.learner import InteractionPublisher, PreferenceLearner
from feedrank.ranking.retriever import CandidateRetriever, RetrievalLimits
from feedrank.ranking.types import FeedOptions, FeedResult, PreferenceRecord, utcnow
from feedrank.repositories.base import (
    ContentRepository,
    InteractionLog,
    PreferenceStore,
    UserRepository,
)
from feedrank.repositories.content import SqlContentRepository
from feedrank.repositories.interactions import SqlInteractionLog
from feedrank.repositories.preferences import SqlPreferenceStore
from feedrank.repositories.users import SqlUserRepository

logger = logging.getLogger(__name__)

ANALYTICS_MAX_RECORDS = 10_000
ANALYTICS_MAX_POSTS = 100

UPDATABLE_PREFERENCES = (
    "social_weight",
    "location_weight",
    "recency_weight",
    "blocked_user_ids",
    "blocked_topics",
)


class FeedService:
    def __init__(
        self,
        assembler: FeedAssembler,
        learner: PreferenceLearner,
        users: UserRepository,
        content: ContentRepository,
        interactions: InteractionLog,
        preferences: PreferenceStore,
        background: BackgroundRunner,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.assembler = assembler
        self.learner = learner
        self.users = users
        self.content = content
        self.interactions = interactions
        self.preferences = preferences
        self.background = background
        self._clock = clock

    async def get_feed(self, user_id: str, options: FeedOptions) -> FeedResult:
        return await self.assembler.get_feed(user_id, options)

    def track_interaction(
        self,
        user_id: str,
        target_type: str,
        target_id: str,
        interaction_type: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Schedule learning from one interaction; returns before it is recorded."""
        self.background.spawn(
            self.learner.record_interaction(
                user_id, target_type, target_id, interaction_type, metadata
            )
        )

    def provide_feedback(
        self, user_id: str, item_id: str, feedback: str, reason: Optional[str] = None
    ) -> bool:
        """Negative feedback is learned as a `hide`; positive feedback is acknowledged only."""
        if feedback != "negative":
            return False
        self.track_interaction(user_id, "post", item_id, "hide", {"reason": reason})
        return True

    async def _require_user(self, user_id: str) -> None:
        if await self.users.get_profile(user_id) is None:
            raise NotFoundError("user", user_id)

    async def get_preferences(self, user_id: str) -> PreferenceRecord:
        await self._require_user(user_id)
        return await self.preferences.get_or_create(user_id)

    async def update_preferences(
        self, user_id: str, changes: dict[str, Any]
    ) -> PreferenceRecord:
        await self._require_user(user_id)
        unknown = set(changes) - set(UPDATABLE_PREFERENCES)
        if unknown:
            raise ValueError(f"not updatable: {', '.join(sorted(unknown))}")

        def mutate(prefs: PreferenceRecord) -> None:
            for name, value in changes.items():
                if name in ("blocked_user_ids", "blocked_topics"):
                    value = set(value)
                setattr(prefs, name, value)

        record = await self.preferences.apply(user_id, mutate)
        logger.info("Preferences of user %s updated: %s", user_id, sorted(changes))
        return record

    async def get_analytics(self, user_id: str, days: int = 7) -> dict[str, Any]:
        await self._require_user(user_id)
        records = await self.interactions.recent(
            user_id, since=self._clock() - timedelta(days=days), limit=ANALYTICS_MAX_RECORDS
        )

        post_ids: list[str] = []
        for record in records:
            if record.target_type == "post" and record.target_id not in post_ids:
                post_ids.append(record.target_id)
        texts = await self.content.get_texts(post_ids[:ANALYTICS_MAX_POSTS])

        return {
            "user_id": user_id,
            "period_days": days,
            "interactions": interaction_stats(records),
            "top_topics": topic_counts(list(texts.values())),
        }


def build_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    publisher: Optional[InteractionPublisher] = None,
    geocoder: Optional[GeocoderClient] = None,
) -> FeedService:
    content = SqlContentRepository(session_factory)
    users = SqlUserRepository(session_factory)
    interactions = SqlInteractionLog(session_factory)
    preferences = SqlPreferenceStore(session_factory)
    background = BackgroundRunner()

    learner = PreferenceLearner(interactions, preferences, content, publisher=publisher)
    assembler = FeedAssembler(
        context_builder=ContextBuilder(
            users,
            preferences,
            interactions,
            geocoder=geocoder,
            window_days=settings.interaction_window_days,
            window_limit=settings.interaction_window_limit,
        ),
        retriever=CandidateRetriever(
            content,
            RetrievalLimits(
                social=settings.social_source_limit,
                popular=settings.popular_source_limit,
                local=settings.local_source_limit,
                topic=settings.topic_source_limit,
                trending=settings.trending_source_limit,
                window_days=settings.candidate_window_days,
                trending_hours=settings.trending_window_hours,
                locality_radius_km=settings.locality_radius_km,
                top_topics=settings.top_topics,
                source_timeout=settings.source_timeout,
            ),
        ),
        content_scores=ContentScoreAccessor(
            RedisContentScoreStore(redis, ttl_days=settings.content_score_ttl_days),
            interactions,
            freshness_days=settings.content_score_ttl_days,
        ),
        learner=learner,
        content=content,
        users=users,
        background=background,
    )
    return FeedService(
        assembler=assembler,
        learner=learner,
        users=users,
        content=content,
        interactions=interactions,
        preferences=preferences,
        background=background,
    )


def get_service(request: Request) -> FeedService:
    """FastAPI dependency: the service built in the app lifespan."""
    return request.app.state.service
