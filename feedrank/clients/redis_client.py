"""
Redis client wrapper.

Responsibilities:
  • Content scores — HASH keyed by cs:{item_id}
                      fields  s.<score>   — popularity, engagement, quality, …
                              m.<metric>  — views, likes, comments, …
                              author_id, last_calculated (Unix seconds)
                      TTL     content_score_ttl_days (the retention policy)

The ranking pipeline reads scores in one pipelined round-trip per request and
writes back any it had to recompute.
"""
import logging
from dataclasses import fields
from datetime import datetime, timezone

import redis.asyncio as aioredis

from feedrank.ranking.types import ContentMetrics, ContentScoreRecord, ContentScores

logger = logging.getLogger(__name__)

SCORE_KEY = "cs:{item_id}"

_INT_METRICS = {"views", "likes", "comments", "shares", "saves"}


def create_redis(host: str, port: int) -> aioredis.Redis:
    return aioredis.Redis(host=host, port=port, decode_responses=True)


async def init_redis(redis: aioredis.Redis) -> None:
    await redis.ping()
    logger.info("Redis connected")


def _encode(record: ContentScoreRecord) -> dict[str, str]:
    mapping = {
        "author_id": record.author_id,
        "last_calculated": str(record.last_calculated.timestamp()),
    }
    for f in fields(ContentScores):
        mapping[f"s.{f.name}"] = str(getattr(record.scores, f.name))
    for f in fields(ContentMetrics):
        mapping[f"m.{f.name}"] = str(getattr(record.metrics, f.name))
    return mapping


def _decode(item_id: str, raw: dict[str, str]) -> ContentScoreRecord:
    scores = ContentScores(
        **{f.name: float(raw[f"s.{f.name}"]) for f in fields(ContentScores) if f"s.{f.name}" in raw}
    )
    metric_values = {}
    for f in fields(ContentMetrics):
        value = raw.get(f"m.{f.name}")
        if value is None:
            continue
        metric_values[f.name] = int(float(value)) if f.name in _INT_METRICS else float(value)
    return ContentScoreRecord(
        item_id=item_id,
        author_id=raw.get("author_id", ""),
        scores=scores,
        metrics=ContentMetrics(**metric_values),
        last_calculated=datetime.fromtimestamp(
            float(raw.get("last_calculated", 0)), tz=timezone.utc
        ),
    )


class RedisContentScoreStore:
    def __init__(self, redis: aioredis.Redis, ttl_days: int = 30) -> None:
        self._redis = redis
        self._ttl_seconds = ttl_days * 86400

    async def get_many(self, item_ids: list[str]) -> dict[str, ContentScoreRecord]:
        """Batch-fetch score hashes; missing or expired items are absent from the result."""
        if not item_ids:
            return {}
        pipe = self._redis.pipeline()
        for item_id in item_ids:
            pipe.hgetall(SCORE_KEY.format(item_id=item_id))
        results = await pipe.execute()
        return {
            item_id: _decode(item_id, raw)
            for item_id, raw in zip(item_ids, results)
            if raw
        }

    async def put(self, record: ContentScoreRecord) -> None:
        key = SCORE_KEY.format(item_id=record.item_id)
        pipe = self._redis.pipeline()
        pipe.hset(key, mapping=_encode(record))
        pipe.expire(key, self._ttl_seconds)
        await pipe.execute()
