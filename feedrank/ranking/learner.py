"""
Preference learner.

Turns observed interactions into small increments of the user's preference
record. Nothing here is allowed to fail the caller: every entry point logs
and counts its errors and returns normally.

  record_interaction  — one direct user action
      topic affinity      += weight × 0.1   (frequency + 1)
      post-type affinity  += weight × 0.05
      hour-of-day bucket  += weight × 0.02

  record_shown        — one served feed page
      hour / day bucket   += 0.01
      post-type affinity  += count / N × 0.02      (existing types only)
      topic affinity      += count / total × 0.01  (new topics under the cap)
"""
import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional, Protocol

from feedrank.ranking.topics import item_topics, post_type
from feedrank.ranking.types import (
    FeedItem,
    HourActivity,
    InteractionRecord,
    PostTypeAffinity,
    PreferenceRecord,
    ScoredCandidate,
    day_of_week,
    utcnow,
)
from feedrank.repositories.base import ContentRepository, InteractionLog, PreferenceStore
from feedrank.telemetry import INTERACTIONS_TOTAL, LEARNING_ERRORS_TOTAL

logger = logging.getLogger(__name__)

INTERACTION_WEIGHTS = {
    "view": 0.1,
    "like": 0.3,
    "comment": 0.5,
    "share": 0.7,
    "save": 0.6,
    "click": 0.4,
    "follow": 0.8,
    "hide": -0.5,
    "report": -1.0,
}
DEFAULT_WEIGHT = 0.1

TOPIC_STEP = 0.1
POST_TYPE_STEP = 0.05
HOUR_STEP = 0.02

SHOWN_TIME_STEP = 0.01
SHOWN_POST_TYPE_STEP = 0.02
SHOWN_TOPIC_STEP = 0.01


def interaction_weight(interaction_type: str) -> float:
    return INTERACTION_WEIGHTS.get(interaction_type, DEFAULT_WEIGHT)


class InteractionPublisher(Protocol):
    async def publish(self, records: list[InteractionRecord]) -> None: ...


def apply_interaction(
    prefs: PreferenceRecord,
    weight: float,
    hour: Optional[int],
    item: Optional[FeedItem] = None,
) -> None:
    """In-place update of `prefs` for one interaction of the given weight."""
    if item is not None:
        for topic in item_topics(item):
            existing = prefs.topic(topic)
            if existing is not None:
                existing.score += weight * TOPIC_STEP
                existing.frequency += 1
            elif not prefs.add_topic(topic, weight * TOPIC_STEP, 1):
                logger.debug("Topic cap reached for user %s, dropping '%s'", prefs.user_id, topic)

        kind = post_type(item)
        existing_type = prefs.post_type(kind)
        if existing_type is not None:
            existing_type.score += weight * POST_TYPE_STEP
        else:
            prefs.post_type_affinities.append(PostTypeAffinity(kind, weight * POST_TYPE_STEP))

    if hour is not None:
        bucket = prefs.hour(hour)
        if bucket is not None:
            bucket.activity += weight * HOUR_STEP
        else:
            prefs.active_hours.append(HourActivity(hour, weight * HOUR_STEP))


def apply_shown(prefs: PreferenceRecord, items: list[FeedItem], shown_at: datetime) -> None:
    """In-place nudge of `prefs` toward what was just served."""
    if not items:
        return

    hour = prefs.hour(shown_at.hour)
    if hour is not None:
        hour.activity += SHOWN_TIME_STEP
    day = prefs.day(day_of_week(shown_at))
    if day is not None:
        day.activity += SHOWN_TIME_STEP

    type_counts = Counter(post_type(item) for item in items)
    for kind, count in type_counts.items():
        existing = prefs.post_type(kind)
        if existing is not None:
            existing.score += count / len(items) * SHOWN_POST_TYPE_STEP

    topic_counts: Counter[str] = Counter()
    for item in items:
        topic_counts.update(item_topics(item))
    total = sum(topic_counts.values())
    for topic, count in topic_counts.items():
        increment = count / total * SHOWN_TOPIC_STEP
        existing = prefs.topic(topic)
        if existing is not None:
            existing.score += increment
            existing.frequency += count
        else:
            prefs.add_topic(topic, increment, count)


class PreferenceLearner:
    def __init__(
        self,
        interactions: InteractionLog,
        preferences: PreferenceStore,
        content: ContentRepository,
        publisher: Optional[InteractionPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._interactions = interactions
        self._preferences = preferences
        self._content = content
        self._publisher = publisher
        self._clock = clock

    async def record_interaction(
        self,
        user_id: str,
        target_type: str,
        target_id: str,
        interaction_type: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[InteractionRecord]:
        """Append the interaction and update preferences; returns None on failure."""
        try:
            now = self._clock()
            weight = interaction_weight(interaction_type)
            record = InteractionRecord(
                user_id=user_id,
                target_type=target_type,
                target_id=target_id,
                interaction_type=interaction_type,
                value=weight,
                metadata={
                    **{k: v for k, v in (metadata or {}).items() if v is not None},
                    "time_of_day": now.hour,
                    "day_of_week": day_of_week(now),
                },
                created_at=now,
            )
            record = await self._interactions.append(record)
            INTERACTIONS_TOTAL.labels(interaction_type=interaction_type).inc()

            item = None
            if target_type == "post":
                item = await self._content.get(target_id)
                if item is None:
                    logger.info("Interaction target post %s not found", target_id)

            await self._preferences.apply(
                user_id,
                lambda prefs: apply_interaction(
                    prefs, weight, record.metadata.get("time_of_day"), item
                ),
            )
            await self._publish([record])
            return record
        except Exception:
            LEARNING_ERRORS_TOTAL.inc()
            logger.exception(
                "Failed to record %s interaction of user %s on %s %s",
                interaction_type, user_id, target_type, target_id,
            )
            return None

    async def record_shown(self, user_id: str, candidates: list[ScoredCandidate]) -> None:
        """Log one `recommendation_shown` record per served item and nudge preferences."""
        if not candidates:
            return
        try:
            now = self._clock()
            records = [
                InteractionRecord(
                    user_id=user_id,
                    target_type="post",
                    target_id=c.item.item_id,
                    interaction_type="recommendation_shown",
                    value=DEFAULT_WEIGHT,
                    metadata={
                        "feed_position": position,
                        "recommendation_score": c.score.total,
                        "post_author": c.item.author_id,
                        "post_type": post_type(c.item),
                        "time_of_day": now.hour,
                        "day_of_week": day_of_week(now),
                    },
                    created_at=now,
                )
                for position, c in enumerate(candidates, start=1)
            ]
            await self._interactions.append_many(records)
            INTERACTIONS_TOTAL.labels(interaction_type="recommendation_shown").inc(len(records))

            items = [c.item for c in candidates]
            await self._preferences.apply(user_id, lambda prefs: apply_shown(prefs, items, now))
            await self._publish(records)
        except Exception:
            LEARNING_ERRORS_TOTAL.inc()
            logger.exception("Failed to record shown feed for user %s", user_id)

    async def _publish(self, records: list[InteractionRecord]) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher.publish(records)
        except Exception as exc:
            # The interaction is already in the log; the event stream is best-effort
            logger.warning("Could not publish %d interaction events: %s", len(records), exc)
