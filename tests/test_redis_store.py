from datetime import timedelta

import fakeredis.aioredis
import pytest

from feedrank.clients.redis_client import SCORE_KEY, RedisContentScoreStore
from feedrank.ranking.types import ContentMetrics, ContentScoreRecord, ContentScores

from conftest import NOW


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


async def test_put_then_get_many(redis) -> None:
    store = RedisContentScoreStore(redis, ttl_days=30)
    record = ContentScoreRecord(
        "p1",
        "author",
        ContentScores(popularity=0.25, quality=0.8, recency=0.5),
        ContentMetrics(views=12, likes=3, avg_dwell_time=4.5),
        last_calculated=NOW,
    )

    await store.put(record)
    found = await store.get_many(["p1", "missing"])

    assert list(found) == ["p1"]
    assert found["p1"] == record
    assert found["p1"].metrics.views == 12


async def test_scores_expire_with_retention(redis) -> None:
    store = RedisContentScoreStore(redis, ttl_days=2)

    await store.put(ContentScoreRecord("p1", "author", last_calculated=NOW))

    ttl = await redis.ttl(SCORE_KEY.format(item_id="p1"))
    assert 0 < ttl <= timedelta(days=2).total_seconds()
    assert await redis.hget("cs:p1", "author_id") == "author"


async def test_empty_lookup_skips_round_trip(redis) -> None:
    assert await RedisContentScoreStore(redis).get_many([]) == {}
