"""Per-user interaction analytics over the interaction log."""
from collections import Counter, defaultdict
from statistics import mean
from typing import Any

from feedrank.ranking.topics import extract_topics
from feedrank.ranking.types import InteractionRecord


def interaction_stats(records: list[InteractionRecord]) -> list[dict[str, Any]]:
    """
    Totals per interaction type, with the average dwell time (None when no
    record carried one) and a per-day count breakdown in date order.
    """
    by_type: dict[str, list[InteractionRecord]] = defaultdict(list)
    for record in records:
        by_type[record.interaction_type].append(record)

    stats = []
    for interaction_type, group in sorted(by_type.items()):
        dwell = [
            r.metadata["dwell_time"] for r in group
            if isinstance(r.metadata.get("dwell_time"), (int, float))
        ]
        per_day = Counter(r.created_at.date().isoformat() for r in group)
        stats.append(
            {
                "interaction_type": interaction_type,
                "total_count": len(group),
                "avg_dwell_time": mean(dwell) if dwell else None,
                "daily_breakdown": [
                    {"day": day, "count": count} for day, count in sorted(per_day.items())
                ],
            }
        )
    stats.sort(key=lambda s: s["total_count"], reverse=True)
    return stats


def topic_counts(texts: list[str], limit: int = 10) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    for text in texts:
        counts.update(extract_topics(text))
    return [{"topic": t, "count": c} for t, c in counts.most_common(limit)]
