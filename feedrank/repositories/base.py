"""
Narrow storage interfaces the ranking pipeline depends on.

The pipeline only ever talks to these protocols; the `Sql*` classes in `feedrank.repositories`
and `feedrank.clients.redis_client` provide the production implementations.
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Optional, Protocol

from feedrank.ranking.types import (
    ContentScoreRecord,
    FeedItem,
    InteractionRecord,
    Location,
    PreferenceRecord,
    UserProfile,
)


class ContentRepository(Protocol):
    async def find_by_social_graph(
        self, author_ids: set[str], since: datetime, limit: int
    ) -> list[FeedItem]: ...

    async def find_popular(self, since: datetime, limit: int) -> list[FeedItem]: ...

    async def find_near(
        self, location: Location, radius_km: float, since: datetime, limit: int
    ) -> list[FeedItem]: ...

    async def find_by_topics(
        self, keywords: list[str], since: datetime, limit: int
    ) -> list[FeedItem]: ...

    async def find_trending(self, since: datetime, limit: int) -> list[FeedItem]: ...

    async def find_recent(
        self, author_ids: set[str], limit: int, offset: int = 0
    ) -> list[FeedItem]:
        """Newest first: items by `author_ids` (public or connections) plus any public item."""
        ...

    async def get(self, item_id: str) -> Optional[FeedItem]: ...

    async def get_texts(self, item_ids: list[str]) -> dict[str, str]:
        """Text of each existing item, without hydration; unknown ids are absent."""
        ...


class UserRepository(Protocol):
    async def get_profile(self, user_id: str) -> Optional[UserProfile]: ...


class InteractionLog(Protocol):
    async def append(self, record: InteractionRecord) -> InteractionRecord: ...

    async def append_many(self, records: list[InteractionRecord]) -> None: ...

    async def recent(
        self, user_id: str, since: datetime, limit: int
    ) -> list[InteractionRecord]: ...

    async def for_targets(
        self, target_type: str, target_ids: list[str]
    ) -> dict[str, list[InteractionRecord]]: ...


class PreferenceStore(Protocol):
    async def get_or_create(self, user_id: str) -> PreferenceRecord: ...

    async def apply(
        self, user_id: str, mutate: Callable[[PreferenceRecord], None]
    ) -> PreferenceRecord:
        """Read-merge-write: run `mutate` on the current record and persist it."""
        ...


class ContentScoreStore(Protocol):
    async def get_many(self, item_ids: list[str]) -> dict[str, ContentScoreRecord]: ...

    async def put(self, record: ContentScoreRecord) -> None: ...
