"""
Content score accessor.

Reads cached ContentScoreRecords in bulk and lazily recomputes the ones that
are missing or older than the freshness threshold. Recomputation aggregates
the item's interaction log into metrics and derives quality, engagement,
popularity, virality and recency scores from them.

A failing score store or interaction log never fails the request: affected
items get a neutral default score set and the degradation is counted.
"""
import logging
import re
from collections import Counter
from datetime import datetime, timedelta

from feedrank.ranking.scorer import clamp, recency_decay
from feedrank.ranking.types import (
    ContentMetrics,
    ContentScoreRecord,
    ContentScores,
    FeedItem,
    InteractionRecord,
    MediaRef,
)
from feedrank.repositories.base import ContentScoreStore, InteractionLog
from feedrank.telemetry import SCORING_DEGRADED_TOTAL

logger = logging.getLogger(__name__)

TEXT_LENGTH_MIN = 50
TEXT_LENGTH_OPTIMAL = 200
TEXT_LENGTH_MAX = 1000
BOUNCE_DWELL_SECONDS = 3
SPAM_PHRASES = ("click here", "buy now", "limited time", "act fast", "guaranteed")

_SENTENCE_PUNCT_RE = re.compile(r"[!?]{2,}")


def _age_hours(item: FeedItem, now: datetime) -> float:
    return max(0.0, (now - item.created_at).total_seconds() / 3600)


# ─────────────────────────── Metrics ──────────────────────────────────────

def compute_metrics(interactions: list[InteractionRecord]) -> ContentMetrics:
    counts: Counter[str] = Counter()
    dwell_total = 0.0
    dwell_count = 0
    bounces = 0

    for interaction in interactions:
        kind = interaction.interaction_type
        counts[kind] += 1
        if kind == "view":
            dwell = interaction.metadata.get("dwell_time")
            if dwell:
                dwell_total += dwell
                dwell_count += 1
                if dwell < BOUNCE_DWELL_SECONDS:
                    bounces += 1

    metrics = ContentMetrics(
        views=counts["view"],
        likes=counts["like"],
        comments=counts["comment"],
        shares=counts["share"],
        saves=counts["save"],
    )
    if dwell_count:
        metrics.avg_dwell_time = dwell_total / dwell_count
    if metrics.views:
        metrics.click_through_rate = counts["click"] / metrics.views
        metrics.bounce_rate = bounces / metrics.views
    return metrics


# ─────────────────────────── Quality ──────────────────────────────────────

def detect_spam(text: str) -> float:
    if not text:
        return 0.0
    spam = 0.0

    caps_ratio = sum(1 for c in text if c.isupper()) / len(text)
    if caps_ratio > 0.3:
        spam += 0.3

    if len(_SENTENCE_PUNCT_RE.findall(text)) > 2:
        spam += 0.2

    words = text.lower().split()
    if words and 1 - len(set(words)) / len(words) > 0.5:
        spam += 0.4

    lowered = text.lower()
    spam += 0.1 * sum(1 for phrase in SPAM_PHRASES if phrase in lowered)
    return min(1.0, spam)


def media_quality(media: list[MediaRef]) -> float:
    score = 0.5
    for ref in media:
        if ref.size:
            if ref.type == "image" and ref.size > 500_000:
                score += 0.1
            if ref.type == "video" and ref.size > 5_000_000:
                score += 0.1
        if ref.type == "video" and ref.duration and 30 <= ref.duration <= 120:
            score += 0.2
    return min(1.0, score / len(media))


def completeness(item: FeedItem) -> float:
    score = 0.0
    if len(item.text) > 10:
        score += 0.3
    if item.media:
        score += 0.3
    if item.location is not None:
        score += 0.1
    if item.tags:
        score += 0.1
    if item.author_verified:
        score += 0.2
    return min(1.0, score)


def quality_score(item: FeedItem) -> float:
    score = 0.5
    if item.text:
        length = len(item.text)
        if TEXT_LENGTH_MIN <= length <= TEXT_LENGTH_MAX:
            if length <= TEXT_LENGTH_OPTIMAL:
                length_score = length / TEXT_LENGTH_OPTIMAL
            else:
                length_score = 1 - (
                    (length - TEXT_LENGTH_OPTIMAL) / (TEXT_LENGTH_MAX - TEXT_LENGTH_OPTIMAL)
                ) * 0.5
            score += length_score * 0.3
        score -= detect_spam(item.text) * 0.4
    if item.media:
        score += media_quality(item.media) * 0.4
    score += completeness(item) * 0.2
    return clamp(score)


# ─────────────────────────── Engagement ───────────────────────────────────

def engagement_score(metrics: ContentMetrics) -> float:
    if metrics.views == 0:
        return 0.0
    actions = metrics.likes + metrics.comments + metrics.shares + metrics.saves
    # 5% engagement rate counts as excellent
    normalized = min(1.0, (actions / metrics.views) / 0.05)
    dwell_bonus = min(0.3, metrics.avg_dwell_time / 30)
    return min(1.0, normalized + dwell_bonus)


def popularity_score(metrics: ContentMetrics) -> float:
    weighted = (
        metrics.views * 0.1
        + metrics.likes * 1
        + metrics.comments * 2
        + metrics.shares * 3
        + metrics.saves * 2.5
    )
    return min(1.0, weighted / 1000)


def engagement_velocity(metrics: ContentMetrics) -> float:
    return min(0.3, (metrics.likes + metrics.comments + metrics.shares) / 100)


def virality_score(metrics: ContentMetrics) -> float:
    if metrics.views == 0:
        return 0.0
    share_rate = metrics.shares / metrics.views
    return min(1.0, share_rate * 10 + engagement_velocity(metrics))


def diversity_score(item: FeedItem) -> float:
    score = 0.5
    if item.media:
        score += (len({m.type for m in item.media}) - 1) * 0.1
    return min(1.0, score)


def analyze(
    item: FeedItem, interactions: list[InteractionRecord], now: datetime
) -> ContentScoreRecord:
    metrics = compute_metrics(interactions)
    return ContentScoreRecord(
        item_id=item.item_id,
        author_id=item.author_id,
        scores=ContentScores(
            popularity=popularity_score(metrics),
            engagement=engagement_score(metrics),
            quality=quality_score(item),
            recency=recency_decay(_age_hours(item, now)),
            virality=virality_score(metrics),
            relevance=0.5,
            diversity=diversity_score(item),
        ),
        metrics=metrics,
        last_calculated=now,
    )


def neutral_record(item: FeedItem, now: datetime) -> ContentScoreRecord:
    """Fixed default used when the score store or interaction log is unavailable."""
    return ContentScoreRecord(
        item_id=item.item_id,
        author_id=item.author_id,
        scores=ContentScores(
            popularity=0.5,
            engagement=0.5,
            quality=0.5,
            recency=recency_decay(_age_hours(item, now)),
            virality=0.5,
            relevance=0.5,
            diversity=0.5,
        ),
        metrics=ContentMetrics(
            likes=item.like_count,
            comments=item.comment_count,
            shares=item.share_count,
        ),
        last_calculated=now,
    )


class ContentScoreAccessor:
    def __init__(
        self,
        store: ContentScoreStore,
        interactions: InteractionLog,
        freshness_days: int = 30,
    ) -> None:
        self._store = store
        self._interactions = interactions
        self._freshness = timedelta(days=freshness_days)

    async def get_scores(
        self, items: list[FeedItem], now: datetime
    ) -> dict[str, ContentScoreRecord]:
        if not items:
            return {}
        item_ids = [i.item_id for i in items]

        try:
            cached = await self._store.get_many(item_ids)
        except Exception as exc:
            logger.warning("Content score store unavailable: %s — using neutral scores", exc)
            SCORING_DEGRADED_TOTAL.inc(len(items))
            return {i.item_id: neutral_record(i, now) for i in items}

        records: dict[str, ContentScoreRecord] = {}
        stale: list[FeedItem] = []
        for item in items:
            record = cached.get(item.item_id)
            if record is None or now - record.last_calculated > self._freshness:
                stale.append(item)
            else:
                records[item.item_id] = record

        if stale:
            records.update(await self._recompute(stale, now))
        return records

    async def _recompute(
        self, items: list[FeedItem], now: datetime
    ) -> dict[str, ContentScoreRecord]:
        try:
            by_target = await self._interactions.for_targets(
                "post", [i.item_id for i in items]
            )
        except Exception as exc:
            logger.warning(
                "Interaction log unavailable for %d score recomputes: %s", len(items), exc
            )
            SCORING_DEGRADED_TOTAL.inc(len(items))
            return {i.item_id: neutral_record(i, now) for i in items}

        records = {}
        for item in items:
            record = analyze(item, by_target.get(item.item_id, []), now)
            records[item.item_id] = record
            try:
                await self._store.put(record)
            except Exception as exc:
                # The computed score is still used for this request
                logger.warning("Could not cache content score for %s: %s", item.item_id, exc)
        logger.debug("Recomputed %d content scores", len(records))
        return records
