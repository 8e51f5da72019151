from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.models import Follow, User
from feedrank.ranking.types import Location, UserProfile


class SqlUserRepository:
    """Identity + social graph lookups."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self._sessions() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None

            following = await session.execute(
                select(Follow.followee_id).where(Follow.follower_id == user_id)
            )
            followers = await session.execute(
                select(Follow.follower_id).where(Follow.followee_id == user_id)
            )

            last_location = None
            if user.last_latitude is not None and user.last_longitude is not None:
                last_location = Location(
                    latitude=user.last_latitude,
                    longitude=user.last_longitude,
                    city=user.last_city,
                    country=user.last_country,
                )

            return UserProfile(
                user_id=user.user_id,
                following_ids={r[0] for r in following.all()},
                follower_ids={r[0] for r in followers.all()},
                last_location=last_location,
            )
