"""
Shared fixtures: in-memory implementations of the storage interfaces and a
factory that wires them into a full ranking pipeline.
"""
import copy
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from feedrank.ranking.assembler import FeedAssembler
from feedrank.ranking.background import BackgroundRunner
from feedrank.ranking.content_scores import ContentScoreAccessor
from feedrank.ranking.context import ContextBuilder
from feedrank.ranking.geo import haversine_km
from feedrank.ranking.learner import PreferenceLearner
from feedrank.ranking.retriever import CandidateRetriever
from feedrank.ranking.topics import item_topics
from feedrank.ranking.types import (
    ContentScoreRecord,
    FeedItem,
    InteractionRecord,
    Location,
    PreferenceRecord,
    RankingContext,
    UserProfile,
)
from feedrank.service import FeedService

# A Wednesday, noon UTC
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class InMemoryContentRepository:
    def __init__(self, items: list[FeedItem], failing: tuple[str, ...] = ()) -> None:
        self.items = list(items)
        self.failing = set(failing)
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def _live(self, since: datetime) -> list[FeedItem]:
        return [i for i in self.items if i.created_at >= since]

    @staticmethod
    def _newest(items: list[FeedItem]) -> list[FeedItem]:
        return sorted(items, key=lambda i: i.created_at, reverse=True)

    @staticmethod
    def _by_engagement(items: list[FeedItem]) -> list[FeedItem]:
        return sorted(items, key=lambda i: (i.like_count, i.comment_count), reverse=True)

    async def find_by_social_graph(self, author_ids, since, limit):
        self._enter("find_by_social_graph")
        found = [
            i for i in self._live(since)
            if i.author_id in author_ids and i.visibility in ("public", "connections")
        ]
        return self._newest(found)[:limit]

    async def find_popular(self, since, limit):
        self._enter("find_popular")
        found = [i for i in self._live(since) if i.visibility == "public"]
        return self._by_engagement(found)[:limit]

    async def find_near(self, location, radius_km, since, limit):
        self._enter("find_near")
        found = [
            i for i in self._live(since)
            if i.visibility == "public"
            and i.location is not None
            and haversine_km(
                location.latitude, location.longitude,
                i.location.latitude, i.location.longitude,
            ) <= radius_km
        ]
        return found[:limit]

    async def find_by_topics(self, keywords, since, limit):
        self._enter("find_by_topics")
        wanted = {k.lower() for k in keywords}
        found = [
            i for i in self._live(since)
            if i.visibility == "public" and wanted.intersection(item_topics(i))
        ]
        return self._newest(found)[:limit]

    async def find_trending(self, since, limit):
        self._enter("find_trending")
        found = [i for i in self._live(since) if i.visibility == "public"]
        return self._by_engagement(found)[:limit]

    async def find_recent(self, author_ids, limit, offset=0):
        self.calls.append("find_recent")
        if "find_recent" in self.failing:
            raise RuntimeError("find_recent unavailable")
        found = [
            i for i in self.items
            if i.visibility == "public"
            or (i.author_id in author_ids and i.visibility == "connections")
        ]
        return self._newest(found)[offset: offset + limit]

    async def get(self, item_id):
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    async def get_texts(self, item_ids):
        self.calls.append("get_texts")
        wanted = set(item_ids)
        return {i.item_id: i.text for i in self.items if i.item_id in wanted}


class InMemoryUserRepository:
    def __init__(self, profiles: list[UserProfile]) -> None:
        self.profiles = {p.user_id: p for p in profiles}

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)


class InMemoryInteractionLog:
    def __init__(self) -> None:
        self.records: list[InteractionRecord] = []

    async def append(self, record: InteractionRecord) -> InteractionRecord:
        record.id = len(self.records) + 1
        self.records.append(record)
        return record

    async def append_many(self, records: list[InteractionRecord]) -> None:
        for record in records:
            await self.append(record)

    async def recent(self, user_id, since, limit):
        found = [r for r in self.records if r.user_id == user_id and r.created_at >= since]
        found.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return found[:limit]

    async def for_targets(self, target_type, target_ids):
        grouped = defaultdict(list)
        for record in self.records:
            if record.target_type == target_type and record.target_id in target_ids:
                grouped[record.target_id].append(record)
        return dict(grouped)


class InMemoryPreferenceStore:
    def __init__(self) -> None:
        self.records: dict[str, PreferenceRecord] = {}

    async def get_or_create(self, user_id: str) -> PreferenceRecord:
        record = self.records.setdefault(user_id, PreferenceRecord(user_id=user_id))
        return copy.deepcopy(record)

    async def apply(self, user_id, mutate):
        record = copy.deepcopy(await self.get_or_create(user_id))
        mutate(record)
        record.version += 1
        self.records[user_id] = record
        return copy.deepcopy(record)


class InMemoryScoreStore:
    def __init__(self, failing: bool = False) -> None:
        self.records: dict[str, ContentScoreRecord] = {}
        self.failing = failing

    async def get_many(self, item_ids):
        if self.failing:
            raise ConnectionError("score store down")
        return {i: self.records[i] for i in item_ids if i in self.records}

    async def put(self, record):
        if self.failing:
            raise ConnectionError("score store down")
        self.records[record.item_id] = record


@dataclass
class Pipeline:
    content: InMemoryContentRepository
    users: InMemoryUserRepository
    interactions: InMemoryInteractionLog
    preferences: InMemoryPreferenceStore
    scores: InMemoryScoreStore
    learner: PreferenceLearner
    assembler: FeedAssembler
    background: BackgroundRunner
    service: FeedService


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_item():
    def factory(item_id: str, author_id: str = "author", hours_ago: float = 1.0, **kwargs):
        return FeedItem(
            item_id=item_id,
            author_id=author_id,
            created_at=NOW - timedelta(hours=hours_ago),
            **kwargs,
        )

    return factory


@pytest.fixture
def make_context():
    def factory(**kwargs) -> RankingContext:
        values = dict(
            user_id="viewer",
            following_ids=set(),
            follower_ids=set(),
            preferences=PreferenceRecord(user_id="viewer"),
            recent_interactions=[],
            hour=NOW.hour,
            day_of_week=3,
            now=NOW,
        )
        values.update(kwargs)
        return RankingContext(**values)

    return factory


@pytest.fixture
def make_pipeline():
    def factory(
        items: list[FeedItem],
        profiles: Optional[list[UserProfile]] = None,
        failing: tuple[str, ...] = (),
        score_store_failing: bool = False,
    ) -> Pipeline:
        content = InMemoryContentRepository(items, failing)
        users = InMemoryUserRepository(profiles or [UserProfile(user_id="viewer")])
        interactions = InMemoryInteractionLog()
        preferences = InMemoryPreferenceStore()
        scores = InMemoryScoreStore(failing=score_store_failing)
        background = BackgroundRunner()
        clock = lambda: NOW  # noqa: E731

        learner = PreferenceLearner(interactions, preferences, content, clock=clock)
        assembler = FeedAssembler(
            context_builder=ContextBuilder(users, preferences, interactions, clock=clock),
            retriever=CandidateRetriever(content),
            content_scores=ContentScoreAccessor(scores, interactions),
            learner=learner,
            content=content,
            users=users,
            background=background,
        )
        service = FeedService(
            assembler=assembler,
            learner=learner,
            users=users,
            content=content,
            interactions=interactions,
            preferences=preferences,
            background=background,
            clock=clock,
        )
        return Pipeline(
            content, users, interactions, preferences, scores,
            learner, assembler, background, service,
        )

    return factory


@pytest.fixture
def viewer_at_paris() -> UserProfile:
    return UserProfile(
        user_id="viewer",
        last_location=Location(48.8566, 2.3522, city="Paris", country="France"),
    )
