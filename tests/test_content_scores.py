from datetime import timedelta

import pytest

from feedrank.ranking import content_scores
from feedrank.ranking.content_scores import ContentScoreAccessor
from feedrank.ranking.types import (
    ContentMetrics,
    ContentScoreRecord,
    ContentScores,
    InteractionRecord,
    MediaRef,
)

from conftest import NOW, InMemoryInteractionLog, InMemoryScoreStore


def _interaction(target_id, kind, **metadata) -> InteractionRecord:
    return InteractionRecord("someone", "post", target_id, kind, metadata=metadata)


def test_metrics_aggregate_interaction_log() -> None:
    log = [
        _interaction("p1", "view", dwell_time=10),
        _interaction("p1", "view", dwell_time=2),
        _interaction("p1", "like"),
        _interaction("p1", "click"),
        _interaction("p1", "share"),
    ]

    metrics = content_scores.compute_metrics(log)

    assert (metrics.views, metrics.likes, metrics.shares) == (2, 1, 1)
    assert metrics.avg_dwell_time == pytest.approx(6.0)
    assert metrics.click_through_rate == pytest.approx(0.5)
    assert metrics.bounce_rate == pytest.approx(0.5)


def test_spam_signals_accumulate() -> None:
    assert content_scores.detect_spam("A calm note about gardening") == 0.0
    assert content_scores.detect_spam("BUY NOW!!! CLICK HERE!!! ACT FAST!!!") == pytest.approx(0.8)


def test_popularity_saturates_at_one() -> None:
    assert content_scores.popularity_score(ContentMetrics(likes=100)) == pytest.approx(0.1)
    assert content_scores.popularity_score(ContentMetrics(shares=1000)) == 1.0


def test_engagement_needs_views() -> None:
    assert content_scores.engagement_score(ContentMetrics(likes=5)) == 0.0
    assert content_scores.engagement_score(
        ContentMetrics(views=100, likes=5)
    ) == pytest.approx(1.0)


def test_quality_rewards_media_and_length(make_item) -> None:
    bare = make_item("p1", text="ok")
    rich = make_item(
        "p2",
        text="A considered paragraph about sourdough starters and hydration. " * 3,
        media=[MediaRef("video", size=6_000_000, duration=60)],
        tags=["baking"],
    )

    assert content_scores.quality_score(rich) > content_scores.quality_score(bare)


def test_recency_score_halves_each_day(make_item) -> None:
    fresh = content_scores.analyze(make_item("p1", hours_ago=0), [], NOW)
    day_old = content_scores.analyze(make_item("p2", hours_ago=24), [], NOW)

    assert day_old.scores.recency == pytest.approx(0.5 * fresh.scores.recency)


async def test_accessor_recomputes_missing_and_caches(make_item) -> None:
    store = InMemoryScoreStore()
    log = InMemoryInteractionLog()
    await log.append(_interaction("p1", "view"))
    await log.append(_interaction("p1", "like"))
    accessor = ContentScoreAccessor(store, log)

    records = await accessor.get_scores([make_item("p1")], NOW)

    assert records["p1"].metrics.likes == 1
    assert store.records["p1"].last_calculated == NOW


async def test_accessor_uses_fresh_cache_and_refreshes_stale(make_item) -> None:
    store = InMemoryScoreStore()
    store.records["fresh"] = ContentScoreRecord(
        "fresh", "author", ContentScores(quality=0.99), last_calculated=NOW - timedelta(days=2)
    )
    store.records["stale"] = ContentScoreRecord(
        "stale", "author", ContentScores(quality=0.99), last_calculated=NOW - timedelta(days=31)
    )
    accessor = ContentScoreAccessor(store, InMemoryInteractionLog(), freshness_days=30)

    records = await accessor.get_scores([make_item("fresh"), make_item("stale")], NOW)

    assert records["fresh"].scores.quality == 0.99
    assert records["stale"].scores.quality != 0.99
    assert store.records["stale"].last_calculated == NOW


async def test_store_outage_yields_neutral_scores(make_item) -> None:
    accessor = ContentScoreAccessor(InMemoryScoreStore(failing=True), InMemoryInteractionLog())

    records = await accessor.get_scores([make_item("p1", hours_ago=24)], NOW)

    scores = records["p1"].scores
    assert (scores.quality, scores.engagement, scores.popularity) == (0.5, 0.5, 0.5)
    assert scores.recency == pytest.approx(0.5)
