from collections import Counter

import pytest

from feedrank.ranking.diversity import author_threshold, diversify
from feedrank.ranking.types import Score, ScoreBreakdown, ScoredCandidate


def _candidate(make_item, item_id, author, total, text="") -> ScoredCandidate:
    breakdown = ScoreBreakdown(0.0, 0.0, 0.0, 0.0, 0.0)
    return ScoredCandidate(
        item=make_item(item_id, author, text=text), score=Score(total, breakdown)
    )


def _top_author_share(candidates: list[ScoredCandidate], k: int) -> float:
    authors = Counter(c.item.author_id for c in candidates[:k])
    return authors.most_common(1)[0][1] / k


def test_author_threshold_is_at_least_one() -> None:
    assert author_threshold(1) == 1
    assert author_threshold(3) == 1
    assert author_threshold(10) == 3
    assert author_threshold(100) == 30


def test_zero_factor_keeps_score_order(make_item) -> None:
    candidates = [
        _candidate(make_item, "a", "x", 0.9, "python tips"),
        _candidate(make_item, "b", "x", 0.7, "python tricks"),
        _candidate(make_item, "c", "y", 0.5),
    ]

    result = diversify(candidates, 0.0)

    assert [c.item.item_id for c in result] == ["a", "b", "c"]
    assert [c.score.total for c in result] == [0.9, 0.7, 0.5]


def test_full_factor_drives_repeated_author_to_zero(make_item) -> None:
    same_author = [
        _candidate(make_item, f"a{i}", "prolific", 0.9 - i * 0.1) for i in range(5)
    ]
    others = [
        _candidate(make_item, f"o{i}", f"author-{i}", 0.45 - i * 0.1) for i in range(5)
    ]
    candidates = same_author + others

    threshold = author_threshold(len(candidates))

    result = diversify(candidates, 1.0)

    scores = {c.item.item_id: c.score.total for c in result}
    for i in range(threshold):
        assert scores[f"a{i}"] == pytest.approx(0.9 - i * 0.1)
    for i in range(threshold, 5):
        assert scores[f"a{i}"] == 0.0
    assert _top_author_share(result, 5) < _top_author_share(diversify(candidates, 0.0), 5)


def test_repeated_author_never_moves_up(make_item) -> None:
    candidates = [
        _candidate(make_item, "a", "x", 0.9),
        _candidate(make_item, "b", "x", 0.8),
        _candidate(make_item, "c", "y", 0.7),
        _candidate(make_item, "d", "z", 0.6),
    ]
    before = [c.item.item_id for c in candidates]

    for factor in (0.1, 0.3, 0.6, 1.0):
        after = [c.item.item_id for c in diversify(candidates, factor)]
        assert after.index("b") >= before.index("b")


def test_topic_overlap_penalty_is_proportional(make_item) -> None:
    candidates = [
        _candidate(make_item, "first", "x", 0.9, "python golang"),
        _candidate(make_item, "second", "y", 0.8, "python rust"),
    ]

    result = diversify(candidates, 0.5)

    second = next(c for c in result if c.item.item_id == "second")
    assert second.score.total == pytest.approx(0.8 * (1 - 0.5 * 1 / 2))


def test_inputs_are_not_mutated(make_item) -> None:
    candidates = [
        _candidate(make_item, "a", "x", 0.9),
        _candidate(make_item, "b", "x", 0.8),
    ]

    diversify(candidates, 1.0)

    assert [c.score.total for c in candidates] == [0.9, 0.8]
