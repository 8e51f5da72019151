"""
Feed assembler — the ranking request as an explicit state machine.

  BUILDING_CONTEXT → RETRIEVING_CANDIDATES → SCORING → DIVERSIFYING
                   → PAGINATING → DONE

Any unexpected exception in a non-terminal state moves the request to the
single terminal FALLBACK state, which serves a reverse-chronological page
tagged `metadata.fallback = True`. Nothing is retried and the primary
pipeline is never re-entered. The only error a caller can see is
NotFoundError raised while building the context for an unknown user.
"""
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from opentelemetry import trace

from feedrank.ranking import scorer
from feedrank.ranking.background import BackgroundRunner
from feedrank.ranking.content_scores import ContentScoreAccessor
from feedrank.ranking.context import ContextBuilder
from feedrank.ranking.diversity import diversify
from feedrank.ranking.errors import NotFoundError
from feedrank.ranking.learner import PreferenceLearner
from feedrank.ranking.retriever import CandidateRetriever, RetrievalResult
from feedrank.ranking.types import (
    FeedOptions,
    FeedResult,
    RankingContext,
    Score,
    ScoreBreakdown,
    ScoredCandidate,
)
from feedrank.repositories.base import ContentRepository, UserRepository
from feedrank.telemetry import FEED_FALLBACK_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class FeedStage(enum.Enum):
    BUILDING_CONTEXT = "building_context"
    RETRIEVING_CANDIDATES = "retrieving_candidates"
    SCORING = "scoring"
    DIVERSIFYING = "diversifying"
    PAGINATING = "paginating"
    DONE = "done"
    FALLBACK = "fallback"


TERMINAL_STAGES = frozenset({FeedStage.DONE, FeedStage.FALLBACK})


@dataclass
class FeedRun:
    """Mutable state of one ranking request as it moves through the stages."""

    user_id: str
    options: FeedOptions
    stage: FeedStage = FeedStage.BUILDING_CONTEXT
    context: Optional[RankingContext] = None
    retrieval: Optional[RetrievalResult] = None
    ranked: list[ScoredCandidate] = field(default_factory=list)
    page: list[ScoredCandidate] = field(default_factory=list)
    failed_stage: Optional[FeedStage] = None
    history: list[FeedStage] = field(default_factory=list)


def _zero_score() -> Score:
    return Score(total=0.0, breakdown=ScoreBreakdown(0.0, 0.0, 0.0, 0.0, 0.0))


class FeedAssembler:
    def __init__(
        self,
        context_builder: ContextBuilder,
        retriever: CandidateRetriever,
        content_scores: ContentScoreAccessor,
        learner: PreferenceLearner,
        content: ContentRepository,
        users: UserRepository,
        background: BackgroundRunner,
    ) -> None:
        self._context_builder = context_builder
        self._retriever = retriever
        self._content_scores = content_scores
        self._learner = learner
        self._content = content
        self._users = users
        self._background = background
        self._handlers: dict[FeedStage, Callable[[FeedRun], Awaitable[FeedStage]]] = {
            FeedStage.BUILDING_CONTEXT: self._build_context,
            FeedStage.RETRIEVING_CANDIDATES: self._retrieve,
            FeedStage.SCORING: self._score,
            FeedStage.DIVERSIFYING: self._diversify,
            FeedStage.PAGINATING: self._paginate,
        }

    # ─────────────────────── Stage handlers ───────────────────────────────

    async def _build_context(self, run: FeedRun) -> FeedStage:
        run.context = await self._context_builder.build(
            run.user_id, run.options.location, exclude_shown=run.options.page == 1
        )
        return FeedStage.RETRIEVING_CANDIDATES

    async def _retrieve(self, run: FeedRun) -> FeedStage:
        run.retrieval = await self._retriever.retrieve(run.context)
        return FeedStage.SCORING

    async def _score(self, run: FeedRun) -> FeedStage:
        items = run.retrieval.items
        records = await self._content_scores.get_scores(items, run.context.now)
        run.ranked = scorer.rank(items, run.context, records)
        for candidate in run.ranked:
            candidate.source = run.retrieval.origins.get(candidate.item.item_id, "")
        return FeedStage.DIVERSIFYING

    async def _diversify(self, run: FeedRun) -> FeedStage:
        run.ranked = diversify(run.ranked, run.options.diversity_factor)
        return FeedStage.PAGINATING

    async def _paginate(self, run: FeedRun) -> FeedStage:
        limit = run.options.limit
        skip = (run.options.page - 1) * limit
        run.page = run.ranked[skip: skip + limit]
        return FeedStage.DONE

    # ─────────────────────── Driver ───────────────────────────────────────

    async def run(self, run: FeedRun) -> FeedRun:
        while run.stage not in TERMINAL_STAGES:
            stage = run.stage
            run.history.append(stage)
            try:
                with tracer.start_as_current_span(f"stage.{stage.value}"):
                    run.stage = await self._handlers[stage](run)
            except NotFoundError:
                if stage is FeedStage.BUILDING_CONTEXT:
                    raise
                self._enter_fallback(run, stage)
            except Exception:
                self._enter_fallback(run, stage)
        return run

    def _enter_fallback(self, run: FeedRun, stage: FeedStage) -> None:
        logger.exception(
            "Feed pipeline failed in %s for user %s — serving chronological fallback",
            stage.value, run.user_id,
        )
        FEED_FALLBACK_TOTAL.labels(stage=stage.value).inc()
        run.failed_stage = stage
        run.stage = FeedStage.FALLBACK

    async def get_feed(self, user_id: str, options: FeedOptions) -> FeedResult:
        start_time = time.perf_counter()

        with tracer.start_as_current_span("get_feed") as span:
            span.set_attribute("user.id", user_id)
            run = await self.run(FeedRun(user_id=user_id, options=options))

            if run.stage is FeedStage.FALLBACK:
                result = await self._fallback(run)
            else:
                result = self._primary_result(run)
                if run.page:
                    self._background.spawn(self._learner.record_shown(user_id, run.page))

            latency_ms = (time.perf_counter() - start_time) * 1000
            FEED_LATENCY.observe(latency_ms / 1000)
            result.metadata["latency_ms"] = round(latency_ms, 2)
            span.set_attribute("feed.items_returned", len(result.items))
            span.set_attribute("feed.fallback", run.stage is FeedStage.FALLBACK)
            return result

    def _primary_result(self, run: FeedRun) -> FeedResult:
        metadata: dict[str, Any] = {
            "total_candidates": len(run.retrieval.items),
            "diversity_applied": run.options.diversity_factor,
            "page": run.options.page,
            "limit": run.options.limit,
            "include_ads": run.options.include_ads,
            "sources": dict(run.retrieval.source_counts),
            "failed_sources": list(run.retrieval.failed_sources),
        }
        return FeedResult(items=run.page, metadata=metadata)

    async def _fallback(self, run: FeedRun) -> FeedResult:
        """Newest followed-or-public items; an empty page if even this fails."""
        options = run.options
        metadata: dict[str, Any] = {
            "fallback": True,
            "failed_stage": run.failed_stage.value if run.failed_stage else None,
            "page": options.page,
            "limit": options.limit,
        }
        try:
            if run.context is not None:
                following = run.context.following_ids
            else:
                profile = await self._users.get_profile(run.user_id)
                following = profile.following_ids if profile else set()
            items = await self._content.find_recent(
                following, limit=options.limit, offset=(options.page - 1) * options.limit
            )
        except Exception:
            logger.exception("Fallback feed failed for user %s", run.user_id)
            items = []
        return FeedResult(
            items=[
                ScoredCandidate(item=item, score=_zero_score(), source="fallback")
                for item in items
            ],
            metadata=metadata,
        )
