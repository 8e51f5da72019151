"""
SQLAlchemy ORM models for TiDB.

Tables:
  users              — identity + last known location
  follows            — social graph edges (follower → followee)
  posts              — content items with engagement counters and geo point
  post_engagements   — user × post reactions / comments / shares
  interactions       — append-only interaction log
  user_preferences   — one versioned preference record per user
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from feedrank.database import Base
from feedrank.ranking.types import naive_utc, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    # Stored as naive UTC
    return naive_utc(utcnow())


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Last known location, refreshed by the session layer (external)
    last_latitude: Mapped[Optional[float]] = mapped_column(Float)
    last_longitude: Mapped[Optional[float]] = mapped_column(Float)
    last_city: Mapped[Optional[str]] = mapped_column(String(120))
    last_country: Mapped[Optional[str]] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)

    __table_args__ = (
        # "who follows user X?"
        Index("idx_followee", "followee_id"),
    )


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    # [{"type": "image"|"video", "size": int?, "duration": float?}, ...]
    media: Mapped[Optional[list]] = mapped_column(JSON)
    tags: Mapped[Optional[list]] = mapped_column(JSON)
    visibility: Mapped[str] = mapped_column(
        String(20), default="public", nullable=False
    )  # 'public' | 'connections' | 'private'
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    location_name: Mapped[Optional[str]] = mapped_column(String(120))
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    share_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)

    __table_args__ = (
        Index("idx_posts_user", "user_id"),
        Index("idx_posts_created", "created_at"),
        Index("idx_posts_geo", "latitude", "longitude"),
    )


class PostEngagement(Base):
    __tablename__ = "post_engagements"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(20), primary_key=True)  # like | comment | share
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)


class Interaction(Base):
    __tablename__ = "interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)

    __table_args__ = (
        Index("idx_interactions_user_created", "user_id", "created_at"),
        Index("idx_interactions_target", "target_type", "target_id"),
    )


class UserPreference(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    topic_affinities: Mapped[list] = mapped_column(JSON, default=list)
    post_type_affinities: Mapped[list] = mapped_column(JSON, default=list)
    active_hours: Mapped[list] = mapped_column(JSON, default=list)
    active_days: Mapped[list] = mapped_column(JSON, default=list)
    social_weight: Mapped[float] = mapped_column(Float, default=0.7, nullable=False)
    location_weight: Mapped[float] = mapped_column(Float, default=0.6, nullable=False)
    recency_weight: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    blocked_user_ids: Mapped[list] = mapped_column(JSON, default=list)
    blocked_topics: Mapped[list] = mapped_column(JSON, default=list)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=_now, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Optimistic concurrency: UPDATE ... WHERE version = :old, bumps version
    __mapper_args__ = {"version_id_col": version}
