"""
Diversity re-ranker.

Single pass over candidates in score order. A candidate whose author already
appeared at least `max(1, floor(0.3 * N))` times is multiplied by
`(1 - factor)`; one sharing k of its t topics with earlier candidates is
multiplied by `(1 - factor * k / t)`. The full list is then re-sorted.

Being greedy and order-sensitive this approximates, not optimises, global
diversity. The thresholds are tunable constants.
"""
import math
from collections import Counter
from dataclasses import replace

from feedrank.ranking.topics import item_topics
from feedrank.ranking.types import ScoredCandidate

AUTHOR_SHARE = 0.3


def author_threshold(n: int) -> int:
    return max(1, math.floor(n * AUTHOR_SHARE))


def diversify(
    candidates: list[ScoredCandidate], diversity_factor: float
) -> list[ScoredCandidate]:
    if diversity_factor <= 0 or not candidates:
        return candidates
    factor = min(1.0, diversity_factor)

    max_same_author = author_threshold(len(candidates))
    author_counts: Counter[str] = Counter()
    seen_topics: set[str] = set()
    result: list[ScoredCandidate] = []

    for candidate in candidates:
        author_id = candidate.item.author_id
        topics = item_topics(candidate.item)
        total = candidate.score.total

        if author_counts[author_id] >= max_same_author:
            total *= 1 - factor

        overlap = sum(1 for topic in topics if topic in seen_topics)
        if overlap:
            total *= 1 - factor * overlap / len(topics)

        result.append(replace(candidate, score=replace(candidate.score, total=total)))
        author_counts[author_id] += 1
        seen_topics.update(topics)

    result.sort(key=lambda c: c.score.total, reverse=True)
    return result
