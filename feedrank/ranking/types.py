"""
Domain records shared by every stage of the ranking pipeline.

These are plain dataclasses, deliberately independent of the ORM models and
of the HTTP schemas: repositories translate storage rows into them, routers
translate them into Pydantic responses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

POST_TYPES = ("text", "image", "video")
SOURCES = ("social", "popular", "local", "topic", "trending")

MAX_TOPICS = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes coming back from the database are UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def naive_utc(moment: datetime) -> datetime:
    return as_utc(moment).replace(tzinfo=None)


def day_of_week(moment: datetime) -> int:
    """Day index with Sunday = 0 … Saturday = 6."""
    return moment.isoweekday() % 7


@dataclass(slots=True)
class Location:
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None


@dataclass(slots=True)
class ItemLocation:
    latitude: float
    longitude: float
    name: Optional[str] = None


@dataclass(slots=True)
class MediaRef:
    type: str                      # 'image' | 'video'
    size: Optional[int] = None     # bytes
    duration: Optional[float] = None  # seconds, videos only


@dataclass(slots=True)
class Engagement:
    user_id: str
    kind: str                      # 'like' | 'comment' | 'share'


@dataclass(slots=True)
class FeedItem:
    """A content item as returned by the content repository, author populated."""

    item_id: str
    author_id: str
    created_at: datetime
    text: str = ""
    media: list[MediaRef] = field(default_factory=list)
    visibility: str = "public"     # 'public' | 'connections' | 'private'
    location: Optional[ItemLocation] = None
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    engagements: list[Engagement] = field(default_factory=list)
    author_follower_ids: set[str] = field(default_factory=set)
    author_following_ids: set[str] = field(default_factory=set)
    author_verified: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class UserProfile:
    user_id: str
    following_ids: set[str] = field(default_factory=set)
    follower_ids: set[str] = field(default_factory=set)
    last_location: Optional[Location] = None


# ─────────────────────────── Preferences ──────────────────────────────────

@dataclass(slots=True)
class TopicAffinity:
    keyword: str
    score: float = 0.0
    frequency: int = 0


@dataclass(slots=True)
class PostTypeAffinity:
    type: str
    score: float = 0.0


@dataclass(slots=True)
class HourActivity:
    hour: int
    activity: float = 0.0


@dataclass(slots=True)
class DayActivity:
    day: int
    activity: float = 0.0


@dataclass(slots=True)
class PreferenceRecord:
    user_id: str
    topic_affinities: list[TopicAffinity] = field(default_factory=list)
    post_type_affinities: list[PostTypeAffinity] = field(
        default_factory=lambda: [PostTypeAffinity(t) for t in POST_TYPES]
    )
    active_hours: list[HourActivity] = field(
        default_factory=lambda: [HourActivity(h) for h in range(24)]
    )
    active_days: list[DayActivity] = field(
        default_factory=lambda: [DayActivity(d) for d in range(7)]
    )
    social_weight: float = 0.7
    location_weight: float = 0.6
    recency_weight: float = 0.5
    blocked_user_ids: set[str] = field(default_factory=set)
    blocked_topics: set[str] = field(default_factory=set)
    last_updated: datetime = field(default_factory=utcnow)
    version: int = 0

    def topic(self, keyword: str) -> Optional[TopicAffinity]:
        keyword = keyword.lower()
        for entry in self.topic_affinities:
            if entry.keyword.lower() == keyword:
                return entry
        return None

    def post_type(self, post_type: str) -> Optional[PostTypeAffinity]:
        for entry in self.post_type_affinities:
            if entry.type == post_type:
                return entry
        return None

    def hour(self, hour: int) -> Optional[HourActivity]:
        for entry in self.active_hours:
            if entry.hour == hour:
                return entry
        return None

    def day(self, day: int) -> Optional[DayActivity]:
        for entry in self.active_days:
            if entry.day == day:
                return entry
        return None

    def add_topic(self, keyword: str, score: float, frequency: int) -> bool:
        """Append a new topic unless the list is already at MAX_TOPICS."""
        if len(self.topic_affinities) >= MAX_TOPICS:
            return False
        self.topic_affinities.append(TopicAffinity(keyword, score, frequency))
        return True

    def top_topics(self, n: int) -> list[str]:
        positive = [t for t in self.topic_affinities if t.score > 0]
        positive.sort(key=lambda t: t.score, reverse=True)
        return [t.keyword for t in positive[:n]]


# ─────────────────────────── Interactions ─────────────────────────────────

@dataclass(slots=True)
class InteractionRecord:
    user_id: str
    target_type: str
    target_id: str
    interaction_type: str
    value: float = 1.0
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


# ─────────────────────────── Content scores ───────────────────────────────

@dataclass(slots=True)
class ContentScores:
    popularity: float = 0.0
    engagement: float = 0.0
    quality: float = 0.0
    recency: float = 1.0
    virality: float = 0.0
    relevance: float = 0.0
    diversity: float = 0.0


@dataclass(slots=True)
class ContentMetrics:
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0
    click_through_rate: float = 0.0
    avg_dwell_time: float = 0.0
    bounce_rate: float = 0.0


@dataclass(slots=True)
class ContentScoreRecord:
    item_id: str
    author_id: str
    scores: ContentScores = field(default_factory=ContentScores)
    metrics: ContentMetrics = field(default_factory=ContentMetrics)
    last_calculated: datetime = field(default_factory=utcnow)


# ─────────────────────────── Ranking ──────────────────────────────────────

@dataclass(slots=True)
class RankingContext:
    user_id: str
    following_ids: set[str]
    follower_ids: set[str]
    preferences: PreferenceRecord
    recent_interactions: list[InteractionRecord]
    hour: int
    day_of_week: int
    now: datetime
    location: Optional[Location] = None
    # False while paging deeper into a feed: earlier pages stay in the ranking
    exclude_shown: bool = True

    @property
    def connection_ids(self) -> set[str]:
        return self.following_ids | self.follower_ids

    def interacted_item_ids(self) -> set[str]:
        return {
            i.target_id
            for i in self.recent_interactions
            if i.target_type == "post"
            and (self.exclude_shown or i.interaction_type != "recommendation_shown")
        }


@dataclass(slots=True)
class ScoreBreakdown:
    social: float
    behavioral: float
    content: float
    location: float
    temporal: float


@dataclass(slots=True)
class Score:
    total: float
    breakdown: ScoreBreakdown


@dataclass(slots=True)
class ScoredCandidate:
    item: FeedItem
    score: Score
    source: str = ""              # candidate source that first yielded the item


@dataclass(slots=True)
class FeedOptions:
    limit: int = 20
    page: int = 1
    include_ads: bool = True
    diversity_factor: float = 0.3
    location: Optional[Location] = None


@dataclass(slots=True)
class FeedResult:
    items: list[ScoredCandidate]
    metadata: dict[str, Any]
