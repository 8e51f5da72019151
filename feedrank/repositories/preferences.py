"""
Versioned preference store on the `user_preferences` table.

Every write is a read-merge-write: load the row, let the caller mutate the
domain record, write it back. The `version` column is SQLAlchemy's
`version_id_col`, so a concurrent writer makes the UPDATE match zero rows and
raises StaleDataError; we then re-read and re-apply the mutation.
"""
import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from feedrank.models import UserPreference
from feedrank.ranking.errors import PreferenceConflict
from feedrank.ranking.types import (
    DayActivity,
    HourActivity,
    PostTypeAffinity,
    PreferenceRecord,
    TopicAffinity,
    as_utc,
    naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


def _to_record(row: UserPreference) -> PreferenceRecord:
    return PreferenceRecord(
        user_id=row.user_id,
        topic_affinities=[
            TopicAffinity(t["keyword"], t.get("score", 0.0), t.get("frequency", 0))
            for t in row.topic_affinities or []
        ],
        post_type_affinities=[
            PostTypeAffinity(p["type"], p.get("score", 0.0))
            for p in row.post_type_affinities or []
        ],
        active_hours=[
            HourActivity(h["hour"], h.get("activity", 0.0)) for h in row.active_hours or []
        ],
        active_days=[
            DayActivity(d["day"], d.get("activity", 0.0)) for d in row.active_days or []
        ],
        social_weight=row.social_weight,
        location_weight=row.location_weight,
        recency_weight=row.recency_weight,
        blocked_user_ids=set(row.blocked_user_ids or []),
        blocked_topics=set(row.blocked_topics or []),
        last_updated=as_utc(row.last_updated),
        version=row.version,
    )


def _write(row: UserPreference, record: PreferenceRecord) -> None:
    row.topic_affinities = [
        {"keyword": t.keyword, "score": t.score, "frequency": t.frequency}
        for t in record.topic_affinities
    ]
    row.post_type_affinities = [
        {"type": p.type, "score": p.score} for p in record.post_type_affinities
    ]
    row.active_hours = [{"hour": h.hour, "activity": h.activity} for h in record.active_hours]
    row.active_days = [{"day": d.day, "activity": d.activity} for d in record.active_days]
    row.social_weight = record.social_weight
    row.location_weight = record.location_weight
    row.recency_weight = record.recency_weight
    row.blocked_user_ids = sorted(record.blocked_user_ids)
    row.blocked_topics = sorted(record.blocked_topics)
    row.last_updated = naive_utc(record.last_updated)


class SqlPreferenceStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
    ) -> None:
        self._sessions = session_factory
        self._max_attempts = max_attempts

    async def _load_or_create(self, session: AsyncSession, user_id: str) -> UserPreference:
        row = await session.get(UserPreference, user_id)
        if row is not None:
            return row

        row = UserPreference(user_id=user_id)
        _write(row, PreferenceRecord(user_id=user_id))
        session.add(row)
        try:
            await session.commit()
            logger.info("Initialised default preferences for user %s", user_id)
            return row
        except IntegrityError:
            # Another request created it first
            await session.rollback()
            return await session.get(UserPreference, user_id)

    async def get_or_create(self, user_id: str) -> PreferenceRecord:
        async with self._sessions() as session:
            row = await self._load_or_create(session, user_id)
            return _to_record(row)

    async def apply(
        self, user_id: str, mutate: Callable[[PreferenceRecord], None]
    ) -> PreferenceRecord:
        for attempt in range(1, self._max_attempts + 1):
            async with self._sessions() as session:
                row = await self._load_or_create(session, user_id)
                record = _to_record(row)
                mutate(record)
                record.last_updated = utcnow()
                _write(row, record)
                try:
                    await session.commit()
                    return _to_record(row)
                except StaleDataError:
                    await session.rollback()
                    logger.info(
                        "Preference write conflict for user %s (attempt %d/%d)",
                        user_id, attempt, self._max_attempts,
                    )
        raise PreferenceConflict(f"preferences of user {user_id} kept changing")
