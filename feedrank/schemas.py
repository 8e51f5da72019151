"""
Pydantic request / response schemas for the API layer.
Kept separate from the ranking dataclasses and the ORM models.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from feedrank.ranking.types import PreferenceRecord, ScoredCandidate


# ──────────────────────────── Feed ────────────────────────────────────────

class LocationOut(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None


class MediaOut(BaseModel):
    type: str
    size: Optional[int] = None
    duration: Optional[float] = None


class ScoreOut(BaseModel):
    total: float
    social: float
    behavioral: float
    content: float
    location: float
    temporal: float


class FeedItemOut(BaseModel):
    """A ranked item as served in the feed, with its score breakdown."""
    item_id: str
    author_id: str
    text: str
    media: list[MediaOut]
    visibility: str
    location: Optional[LocationOut]
    tags: list[str]
    like_count: int
    comment_count: int
    share_count: int
    created_at: datetime
    score: ScoreOut
    source: str   # social | popular | local | topic | trending | fallback

    @classmethod
    def from_candidate(cls, candidate: ScoredCandidate) -> "FeedItemOut":
        item = candidate.item
        breakdown = candidate.score.breakdown
        return cls(
            item_id=item.item_id,
            author_id=item.author_id,
            text=item.text,
            media=[MediaOut(type=m.type, size=m.size, duration=m.duration) for m in item.media],
            visibility=item.visibility,
            location=(
                LocationOut(
                    latitude=item.location.latitude,
                    longitude=item.location.longitude,
                    name=item.location.name,
                )
                if item.location else None
            ),
            tags=list(item.tags),
            like_count=item.like_count,
            comment_count=item.comment_count,
            share_count=item.share_count,
            created_at=item.created_at,
            score=ScoreOut(
                total=candidate.score.total,
                social=breakdown.social,
                behavioral=breakdown.behavioral,
                content=breakdown.content,
                location=breakdown.location,
                temporal=breakdown.temporal,
            ),
            source=candidate.source,
        )


class FeedResponse(BaseModel):
    user_id: str
    items: list[FeedItemOut]
    # Pipeline metadata: candidate counts, sources, latency, fallback flag
    metadata: dict[str, Any]


# ──────────────────────────── Interactions ────────────────────────────────

class InteractionRequest(BaseModel):
    user_id: str
    target_type: str = Field(..., pattern="^(post|user|group|page|product)$")
    target_id: str
    interaction_type: str = Field(
        ...,
        pattern="^(view|like|comment|share|save|click|follow|hide|report|recommendation_shown)$",
    )
    dwell_time: Optional[float] = Field(None, ge=0)
    scroll_depth: Optional[float] = Field(None, ge=0, le=1)
    feed_position: Optional[int] = Field(None, ge=1)
    device_type: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    city: Optional[str] = None
    country: Optional[str] = None

    def interaction_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "dwell_time": self.dwell_time,
            "scroll_depth": self.scroll_depth,
            "feed_position": self.feed_position,
            "device_type": self.device_type,
        }
        if self.latitude is not None and self.longitude is not None:
            metadata["location"] = {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "city": self.city,
                "country": self.country,
            }
        return metadata


class FeedbackRequest(BaseModel):
    user_id: str
    item_id: str
    feedback: str = Field(..., pattern="^(positive|negative)$")
    reason: Optional[str] = Field(None, max_length=500)


class AcceptedResponse(BaseModel):
    status: str = "accepted"
    message: str


class DailyCount(BaseModel):
    day: str            # ISO date
    count: int


class InteractionTypeStats(BaseModel):
    interaction_type: str
    total_count: int
    avg_dwell_time: Optional[float]
    daily_breakdown: list[DailyCount]


class TopicCount(BaseModel):
    topic: str
    count: int


class AnalyticsResponse(BaseModel):
    user_id: str
    period_days: int
    interactions: list[InteractionTypeStats]
    top_topics: list[TopicCount]


# ──────────────────────────── Preferences ─────────────────────────────────

class TopicAffinityOut(BaseModel):
    keyword: str
    score: float
    frequency: int


class PostTypeAffinityOut(BaseModel):
    type: str
    score: float


class PreferenceResponse(BaseModel):
    user_id: str
    topic_affinities: list[TopicAffinityOut]
    post_type_affinities: list[PostTypeAffinityOut]
    active_hours: dict[int, float]
    active_days: dict[int, float]
    social_weight: float
    location_weight: float
    recency_weight: float
    blocked_user_ids: list[str]
    blocked_topics: list[str]
    last_updated: datetime

    @classmethod
    def from_record(cls, record: PreferenceRecord) -> "PreferenceResponse":
        return cls(
            user_id=record.user_id,
            topic_affinities=[
                TopicAffinityOut(keyword=t.keyword, score=t.score, frequency=t.frequency)
                for t in record.topic_affinities
            ],
            post_type_affinities=[
                PostTypeAffinityOut(type=p.type, score=p.score)
                for p in record.post_type_affinities
            ],
            active_hours={h.hour: h.activity for h in record.active_hours},
            active_days={d.day: d.activity for d in record.active_days},
            social_weight=record.social_weight,
            location_weight=record.location_weight,
            recency_weight=record.recency_weight,
            blocked_user_ids=sorted(record.blocked_user_ids),
            blocked_topics=sorted(record.blocked_topics),
            last_updated=record.last_updated,
        )


class PreferenceUpdate(BaseModel):
    """Partial update; omitted fields are left untouched."""
    social_weight: Optional[float] = Field(None, ge=0, le=1)
    location_weight: Optional[float] = Field(None, ge=0, le=1)
    recency_weight: Optional[float] = Field(None, ge=0, le=1)
    blocked_user_ids: Optional[list[str]] = None
    blocked_topics: Optional[list[str]] = None
