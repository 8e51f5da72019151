import pytest

from feedrank.ranking.learner import (
    PreferenceLearner,
    apply_interaction,
    apply_shown,
    interaction_weight,
)
from feedrank.ranking.types import (
    MAX_TOPICS,
    MediaRef,
    PreferenceRecord,
    Score,
    ScoreBreakdown,
    ScoredCandidate,
    TopicAffinity,
)

from conftest import (
    NOW,
    InMemoryContentRepository,
    InMemoryInteractionLog,
    InMemoryPreferenceStore,
)


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.published = []
        self.fail = fail

    async def publish(self, records) -> None:
        if self.fail:
            raise ConnectionError("broker down")
        self.published.extend(records)


class BrokenPreferenceStore(InMemoryPreferenceStore):
    async def apply(self, user_id, mutate):
        raise RuntimeError("database gone")


def _learner(items=(), preferences=None, publisher=None):
    interactions = InMemoryInteractionLog()
    preferences = preferences or InMemoryPreferenceStore()
    learner = PreferenceLearner(
        interactions,
        preferences,
        InMemoryContentRepository(list(items)),
        publisher=publisher,
        clock=lambda: NOW,
    )
    return learner, interactions, preferences


def _shown(item, total=0.5) -> ScoredCandidate:
    return ScoredCandidate(item, Score(total, ScoreBreakdown(0.0, 0.0, 0.0, 0.0, 0.0)))


def test_interaction_weights() -> None:
    assert interaction_weight("like") == 0.3
    assert interaction_weight("report") == -1.0
    assert interaction_weight("something-new") == 0.1


async def test_tracking_is_append_only(make_item) -> None:
    learner, interactions, _ = _learner([make_item("p1", text="python")])

    for _ in range(3):
        await learner.record_interaction("viewer", "post", "p1", "like")
    first = interactions.records[0]
    snapshot = (first.id, first.interaction_type, dict(first.metadata))
    await learner.record_interaction("viewer", "post", "p1", "like")

    assert len(interactions.records) == 4
    assert [r.id for r in interactions.records] == [1, 2, 3, 4]
    assert (first.id, first.interaction_type, first.metadata) == snapshot


async def test_like_updates_topics_type_and_hour(make_item) -> None:
    learner, interactions, preferences = _learner([make_item("p1", text="python tutorial")])

    record = await learner.record_interaction(
        "viewer", "post", "p1", "like", {"dwell_time": 12, "device_type": None}
    )

    assert record.value == 0.3
    assert record.metadata == {"dwell_time": 12, "time_of_day": 12, "day_of_week": 3}
    prefs = preferences.records["viewer"]
    assert prefs.topic("python").score == pytest.approx(0.03)
    assert prefs.topic("python").frequency == 1
    assert prefs.topic("tutorial") is not None
    assert prefs.post_type("text").score == pytest.approx(0.015)
    assert prefs.hour(12).activity == pytest.approx(0.006)


async def test_negative_interaction_lowers_affinity(make_item) -> None:
    learner, _, preferences = _learner([make_item("p1", text="celebrity gossip")])

    await learner.record_interaction("viewer", "post", "p1", "hide")

    assert preferences.records["viewer"].topic("gossip").score == pytest.approx(-0.05)


async def test_non_post_targets_only_touch_the_hour_bucket() -> None:
    learner, interactions, preferences = _learner()

    await learner.record_interaction("viewer", "user", "someone", "follow")

    prefs = preferences.records["viewer"]
    assert prefs.topic_affinities == []
    assert prefs.hour(12).activity == pytest.approx(0.8 * 0.02)
    assert interactions.records[0].target_type == "user"


def test_topic_list_never_exceeds_cap(make_item) -> None:
    prefs = PreferenceRecord(
        user_id="viewer",
        topic_affinities=[TopicAffinity(f"topic{i:03d}", 0.1, 1) for i in range(MAX_TOPICS)],
    )
    item = make_item("p1", text="brand fresh words topic007")

    apply_interaction(prefs, 0.3, 12, item)

    assert len(prefs.topic_affinities) == MAX_TOPICS
    assert prefs.topic("brand") is None
    assert prefs.topic("topic007").score == pytest.approx(0.13)


async def test_failures_are_swallowed(make_item) -> None:
    learner, interactions, _ = _learner(
        [make_item("p1")], preferences=BrokenPreferenceStore()
    )

    result = await learner.record_interaction("viewer", "post", "p1", "like")

    assert result is None
    assert len(interactions.records) == 1


async def test_events_are_published_best_effort(make_item) -> None:
    publisher = RecordingPublisher()
    learner, _, _ = _learner([make_item("p1")], publisher=publisher)
    await learner.record_interaction("viewer", "post", "p1", "share")
    assert [r.interaction_type for r in publisher.published] == ["share"]

    failing = RecordingPublisher(fail=True)
    learner, interactions, _ = _learner([make_item("p1")], publisher=failing)
    record = await learner.record_interaction("viewer", "post", "p1", "share")
    assert record is not None
    assert len(interactions.records) == 1


async def test_record_shown_logs_positions_and_nudges(make_item) -> None:
    learner, interactions, preferences = _learner()
    page = [
        _shown(make_item("p1", "a", text="python tips"), 0.9),
        _shown(make_item("p2", "b", text="python news", media=[MediaRef("image")]), 0.7),
    ]

    await learner.record_shown("viewer", page)

    shown = interactions.records
    assert [r.interaction_type for r in shown] == ["recommendation_shown"] * 2
    assert [r.metadata["feed_position"] for r in shown] == [1, 2]
    assert shown[0].metadata["recommendation_score"] == 0.9
    assert shown[1].metadata["post_type"] == "image"

    prefs = preferences.records["viewer"]
    assert prefs.hour(12).activity == pytest.approx(0.01)
    assert prefs.day(3).activity == pytest.approx(0.01)
    assert prefs.post_type("text").score == pytest.approx(0.5 * 0.02)
    # topic counts: python 2, tips 1, news 1
    assert prefs.topic("python").score == pytest.approx(2 / 4 * 0.01)
    assert prefs.topic("python").frequency == 2


def test_apply_shown_ignores_empty_page() -> None:
    prefs = PreferenceRecord(user_id="viewer")

    apply_shown(prefs, [], NOW)

    assert all(h.activity == 0 for h in prefs.active_hours)
