"""
Append-only interaction log on the `interactions` table.

Rows are only ever inserted; retention (pruning old rows) belongs to an
external maintenance job.
"""
from collections import defaultdict
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.models import Interaction
from feedrank.ranking.types import InteractionRecord, as_utc, naive_utc


def _to_row(record: InteractionRecord) -> Interaction:
    return Interaction(
        user_id=record.user_id,
        target_type=record.target_type,
        target_id=record.target_id,
        interaction_type=record.interaction_type,
        value=record.value,
        meta=record.metadata,
        created_at=naive_utc(record.created_at),
    )


def _to_record(row: Interaction) -> InteractionRecord:
    return InteractionRecord(
        id=row.id,
        user_id=row.user_id,
        target_type=row.target_type,
        target_id=row.target_id,
        interaction_type=row.interaction_type,
        value=row.value,
        metadata=dict(row.meta or {}),
        created_at=as_utc(row.created_at),
    )


class SqlInteractionLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def append(self, record: InteractionRecord) -> InteractionRecord:
        async with self._sessions() as session:
            row = _to_row(record)
            session.add(row)
            await session.commit()
            record.id = row.id
            return record

    async def append_many(self, records: list[InteractionRecord]) -> None:
        if not records:
            return
        async with self._sessions() as session:
            session.add_all([_to_row(r) for r in records])
            await session.commit()

    async def recent(
        self, user_id: str, since: datetime, limit: int
    ) -> list[InteractionRecord]:
        """Newest first, bounded by `limit`."""
        async with self._sessions() as session:
            rows = await session.execute(
                select(Interaction)
                .where(
                    Interaction.user_id == user_id,
                    Interaction.created_at >= naive_utc(since),
                )
                .order_by(Interaction.created_at.desc(), Interaction.id.desc())
                .limit(limit)
            )
            return [_to_record(r) for r in rows.scalars().all()]

    async def for_targets(
        self, target_type: str, target_ids: list[str]
    ) -> dict[str, list[InteractionRecord]]:
        if not target_ids:
            return {}
        async with self._sessions() as session:
            rows = await session.execute(
                select(Interaction).where(
                    Interaction.target_type == target_type,
                    Interaction.target_id.in_(target_ids),
                )
            )
            grouped: dict[str, list[InteractionRecord]] = defaultdict(list)
            for row in rows.scalars().all():
                grouped[row.target_id].append(_to_record(row))
            return dict(grouped)
