"""
Multi-source candidate retrieval.

  Source     │ Filter                                         │ Cap
  ───────────┼────────────────────────────────────────────────┼─────
  social     │ followed authors, public|connections, 7 days   │ 100
  popular    │ public, 7 days, by engagement counters         │  50
  local      │ public, ≤ 50 km of the resolved location       │  30
  topic      │ public, top-10 positive topic affinities       │  40
  trending   │ public, last 24 h, by engagement counters      │  20

All five run concurrently, each under its own timeout. A source that raises
or times out contributes nothing. `local` and `topic` are skipped when the
request has no location or the user no positive topic affinity. When no
source succeeds and at least one failed, the retriever gives up with
UpstreamUnavailable.

Merge: first-seen-wins by item id (social first), then drop items the user
interacted with in the context window, items by blocked authors and items
carrying blocked topics.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from opentelemetry import trace

from feedrank.ranking.errors import UpstreamUnavailable
from feedrank.ranking.topics import item_topics
from feedrank.ranking.types import FeedItem, RankingContext
from feedrank.repositories.base import ContentRepository
from feedrank.telemetry import FEED_CANDIDATES_TOTAL, SOURCE_FAILURES_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

OK = "ok"
SKIPPED = "skipped"
FAILED = "failed"

SourceFetch = Callable[[], Awaitable[Optional[list[FeedItem]]]]


@dataclass(slots=True)
class RetrievalLimits:
    social: int = 100
    popular: int = 50
    local: int = 30
    topic: int = 40
    trending: int = 20
    window_days: int = 7
    trending_hours: int = 24
    locality_radius_km: float = 50.0
    top_topics: int = 10
    source_timeout: float = 0.5


@dataclass(slots=True)
class RetrievalResult:
    items: list[FeedItem]
    source_counts: dict[str, int] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)
    origins: dict[str, str] = field(default_factory=dict)   # item id → source


class CandidateRetriever:
    def __init__(self, content: ContentRepository, limits: RetrievalLimits | None = None) -> None:
        self._content = content
        self.limits = limits or RetrievalLimits()

    def _sources(self, context: RankingContext) -> dict[str, SourceFetch]:
        """Source name → fetch coroutine; a fetch returning None means 'not applicable'."""
        limits = self.limits
        since = context.now - timedelta(days=limits.window_days)
        trending_since = context.now - timedelta(hours=limits.trending_hours)

        async def social() -> list[FeedItem]:
            return await self._content.find_by_social_graph(
                context.following_ids, since, limits.social
            )

        async def popular() -> list[FeedItem]:
            return await self._content.find_popular(since, limits.popular)

        async def local() -> Optional[list[FeedItem]]:
            if context.location is None:
                return None
            return await self._content.find_near(
                context.location, limits.locality_radius_km, since, limits.local
            )

        async def topic() -> Optional[list[FeedItem]]:
            keywords = context.preferences.top_topics(limits.top_topics)
            if not keywords:
                return None
            return await self._content.find_by_topics(keywords, since, limits.topic)

        async def trending() -> list[FeedItem]:
            return await self._content.find_trending(trending_since, limits.trending)

        return {
            "social": social,
            "popular": popular,
            "local": local,
            "topic": topic,
            "trending": trending,
        }

    async def _run_source(self, name: str, fetch: SourceFetch) -> tuple[list[FeedItem], str]:
        """Returns (items, status). Failures and timeouts degrade to an empty list."""
        with tracer.start_as_current_span(f"source.{name}") as span:
            try:
                items = await asyncio.wait_for(fetch(), timeout=self.limits.source_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Candidate source '%s' timed out after %.2fs", name, self.limits.source_timeout
                )
                SOURCE_FAILURES_TOTAL.labels(source=name).inc()
                span.set_attribute("source.failed", True)
                return [], FAILED
            except Exception as exc:
                logger.warning("Candidate source '%s' failed: %s", name, exc)
                SOURCE_FAILURES_TOTAL.labels(source=name).inc()
                span.set_attribute("source.failed", True)
                return [], FAILED
            if items is None:
                span.set_attribute("source.skipped", True)
                return [], SKIPPED
            span.set_attribute("source.items", len(items))
            FEED_CANDIDATES_TOTAL.labels(source=name).inc(len(items))
            return items, OK

    async def retrieve(self, context: RankingContext) -> RetrievalResult:
        sources = self._sources(context)
        outcomes = await asyncio.gather(
            *[self._run_source(name, fetch) for name, fetch in sources.items()]
        )

        source_counts: dict[str, int] = {}
        failed: list[str] = []
        succeeded = 0
        batches: dict[str, list[FeedItem]] = {}
        for name, (items, status) in zip(sources, outcomes):
            source_counts[name] = len(items)
            if status == FAILED:
                failed.append(name)
            elif status == OK:
                succeeded += 1
            batches[name] = items

        if failed and not succeeded:
            raise UpstreamUnavailable(failed)

        items, origins = self._merge(batches, context)
        return RetrievalResult(
            items=items,
            source_counts=source_counts,
            failed_sources=failed,
            origins=origins,
        )

    def _merge(
        self, batches: dict[str, list[FeedItem]], context: RankingContext
    ) -> tuple[list[FeedItem], dict[str, str]]:
        interacted = context.interacted_item_ids()
        blocked_authors = context.preferences.blocked_user_ids
        blocked_topics = {t.lower() for t in context.preferences.blocked_topics}

        seen: set[str] = set()
        merged: list[FeedItem] = []
        origins: dict[str, str] = {}
        for source, batch in batches.items():
            for item in batch:
                if item.item_id in seen:
                    continue
                seen.add(item.item_id)
                if item.item_id in interacted or item.author_id in blocked_authors:
                    continue
                if blocked_topics and blocked_topics.intersection(item_topics(item)):
                    continue
                merged.append(item)
                origins[item.item_id] = source
        return merged, origins
