"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB / MySQL ───────────────────────────────────────────────────────
    db_host: str = "tidb"
    db_port: int = 4000
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "social_feed"
    # Full SQLAlchemy URL (env DATABASE_URL); takes precedence over the fields above
    database_url_override: Optional[str] = Field(None, validation_alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis (content score cache) ────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_enabled: bool = True
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_interactions: str = "interactions"

    # ── Reverse geocoding (OpenCage) ───────────────────────────────────────
    geocoder_url: str = "https://api.opencagedata.com/geocode/v1/json"
    geocoder_api_key: Optional[str] = None   # geocoding disabled when unset
    geocoder_timeout: float = 1.0

    # ── Candidate retrieval ────────────────────────────────────────────────
    candidate_window_days: int = 7
    trending_window_hours: int = 24
    social_source_limit: int = 100
    popular_source_limit: int = 50
    local_source_limit: int = 30
    topic_source_limit: int = 40
    trending_source_limit: int = 20
    top_topics: int = 10                 # affinities used by the topic source
    locality_radius_km: float = 50.0
    source_timeout: float = 0.5          # seconds, per candidate source

    # ── Context ────────────────────────────────────────────────────────────
    interaction_window_days: int = 7
    interaction_window_limit: int = 1000

    # ── Content scores ─────────────────────────────────────────────────────
    content_score_ttl_days: int = 30

    # ── Feed defaults ──────────────────────────────────────────────────────
    feed_default_limit: int = 20
    feed_max_limit: int = 100
    feed_default_diversity: float = 0.3

    # ── Observability ──────────────────────────────────────────────────────
    log_level: str = "INFO"
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feedrank"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True


settings = Settings()
