"""
Multi-factor relevance scorer.

  total = 0.30 * social
        + 0.25 * behavioral
        + 0.20 * content
        + 0.15 * location
        + 0.10 * temporal

Every sub-score is clamped to [0, 1] before the weighted sum, and the sum is
clamped again. Weights are engine constants, not per-user. Scoring is a pure
function of (item, context, content score): content scores are fetched in
bulk beforehand by the ContentScoreAccessor.
"""
from __future__ import annotations

from feedrank.ranking.geo import haversine_km
from feedrank.ranking.topics import item_topics, post_type
from feedrank.ranking.types import (
    ContentScoreRecord,
    FeedItem,
    RankingContext,
    Score,
    ScoreBreakdown,
    ScoredCandidate,
)

WEIGHTS = {
    "social": 0.30,
    "behavioral": 0.25,
    "content": 0.20,
    "location": 0.15,
    "temporal": 0.10,
}

RECENCY_HALF_LIFE_HOURS = 24.0
TEMPORAL_DECAY_HOURS = 168.0          # one week
NEUTRAL_LOCATION_SCORE = 0.1

# (max distance km, bonus), first matching tier wins
DISTANCE_TIERS = ((10.0, 0.8), (50.0, 0.6), (200.0, 0.3))
CITY_MATCH_BONUS = 0.5


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def age_hours(item: FeedItem, context: RankingContext) -> float:
    return max(0.0, (context.now - item.created_at).total_seconds() / 3600)


def recency_decay(hours: float) -> float:
    """Exponential freshness that halves every 24 hours."""
    return 0.5 ** (max(0.0, hours) / RECENCY_HALF_LIFE_HOURS)


def mutual_connections(item: FeedItem, context: RankingContext) -> int:
    author_graph = item.author_follower_ids | item.author_following_ids
    return len(author_graph & context.connection_ids)


def friend_engagement(item: FeedItem, context: RankingContext) -> int:
    """Reactions and comments by any connection, shares by followed users."""
    connections = context.connection_ids
    count = 0
    for engagement in item.engagements:
        if engagement.kind == "share":
            if engagement.user_id in context.following_ids:
                count += 1
        elif engagement.user_id in connections:
            count += 1
    return count


def social_score(item: FeedItem, context: RankingContext) -> float:
    score = 0.0
    if item.author_id in context.following_ids:
        score += 0.8
    elif item.author_id in context.follower_ids:
        score += 0.6
    score += min(0.3, mutual_connections(item, context) * 0.05)
    score += min(0.4, friend_engagement(item, context) * 0.1)
    return clamp(score * context.preferences.social_weight)


def behavioral_score(item: FeedItem, context: RankingContext) -> float:
    prefs = context.preferences
    score = 0.0

    type_pref = prefs.post_type(post_type(item))
    if type_pref is not None:
        score += max(0.0, type_pref.score) * 0.3

    for topic in item_topics(item):
        topic_pref = prefs.topic(topic)
        if topic_pref is not None:
            score += max(0.0, topic_pref.score) * 0.2

    author_values = [
        i.value
        for i in context.recent_interactions
        if i.target_type == "user" and i.target_id == item.author_id
    ]
    if author_values:
        average = sum(author_values) / len(author_values)
        score += min(0.5, average * 0.1)

    return clamp(score)


def content_score(
    item: FeedItem, context: RankingContext, record: ContentScoreRecord
) -> float:
    scores = record.scores
    score = scores.quality * 0.3 + scores.engagement * 0.3 + scores.popularity * 0.2
    freshness = recency_decay(age_hours(item, context))
    score += freshness * context.preferences.recency_weight * 0.2
    return clamp(score)


def location_score(item: FeedItem, context: RankingContext) -> float:
    location = context.location
    if location is None or item.location is None:
        return NEUTRAL_LOCATION_SCORE

    score = 0.0
    distance = haversine_km(
        location.latitude,
        location.longitude,
        item.location.latitude,
        item.location.longitude,
    )
    for max_km, bonus in DISTANCE_TIERS:
        if distance < max_km:
            score += bonus
            break
    if location.city and location.city == item.location.name:
        score += CITY_MATCH_BONUS
    return clamp(score * context.preferences.location_weight)


def temporal_score(item: FeedItem, context: RankingContext) -> float:
    prefs = context.preferences
    score = 0.0

    hour = prefs.hour(context.hour)
    if hour is not None:
        score += max(0.0, hour.activity) * 0.3
    day = prefs.day(context.day_of_week)
    if day is not None:
        score += max(0.0, day.activity) * 0.3

    score += max(0.0, 1 - age_hours(item, context) / TEMPORAL_DECAY_HOURS) * 0.4
    return clamp(score)


def combine(breakdown: ScoreBreakdown) -> float:
    total = (
        breakdown.social * WEIGHTS["social"]
        + breakdown.behavioral * WEIGHTS["behavioral"]
        + breakdown.content * WEIGHTS["content"]
        + breakdown.location * WEIGHTS["location"]
        + breakdown.temporal * WEIGHTS["temporal"]
    )
    return clamp(total)


def score(
    item: FeedItem, context: RankingContext, record: ContentScoreRecord
) -> ScoredCandidate:
    breakdown = ScoreBreakdown(
        social=social_score(item, context),
        behavioral=behavioral_score(item, context),
        content=content_score(item, context, record),
        location=location_score(item, context),
        temporal=temporal_score(item, context),
    )
    return ScoredCandidate(item=item, score=Score(total=combine(breakdown), breakdown=breakdown))


def rank(
    items: list[FeedItem],
    context: RankingContext,
    records: dict[str, ContentScoreRecord],
) -> list[ScoredCandidate]:
    """Score every item and sort by total, highest first (stable for ties)."""
    scored = [score(item, context, records[item.item_id]) for item in items]
    scored.sort(key=lambda c: c.score.total, reverse=True)
    return scored
