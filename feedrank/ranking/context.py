import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from feedrank.clients.geocoder import GeocoderClient
from feedrank.ranking.errors import NotFoundError
from feedrank.ranking.types import Location, RankingContext, day_of_week, utcnow
from feedrank.repositories.base import InteractionLog, PreferenceStore, UserRepository

logger = logging.getLogger(__name__)


class ContextBuilder:
    """
    Assembles the RankingContext of one feed request: social graph,
    preference record (created on first access), recent interactions, the
    current hour/day and the resolved location.

    Location resolution order: request coordinates (reverse-geocoded when no
    city was given and a geocoder is configured), then the user's last known
    location, then none.
    """

    def __init__(
        self,
        users: UserRepository,
        preferences: PreferenceStore,
        interactions: InteractionLog,
        geocoder: Optional[GeocoderClient] = None,
        window_days: int = 7,
        window_limit: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._preferences = preferences
        self._interactions = interactions
        self._geocoder = geocoder
        self._window = timedelta(days=window_days)
        self._window_limit = window_limit
        self._clock = clock

    async def build(
        self,
        user_id: str,
        location: Optional[Location] = None,
        exclude_shown: bool = True,
    ) -> RankingContext:
        """`exclude_shown=False` keeps previously served items eligible (pages after the first)."""
        profile = await self._users.get_profile(user_id)
        if profile is None:
            raise NotFoundError("user", user_id)

        now = self._clock()
        preferences = await self._preferences.get_or_create(user_id)
        recent = await self._interactions.recent(
            user_id, since=now - self._window, limit=self._window_limit
        )

        return RankingContext(
            user_id=user_id,
            following_ids=set(profile.following_ids),
            follower_ids=set(profile.follower_ids),
            preferences=preferences,
            recent_interactions=recent,
            hour=now.hour,
            day_of_week=day_of_week(now),
            now=now,
            location=await self._resolve_location(location, profile.last_location),
            exclude_shown=exclude_shown,
        )

    async def _resolve_location(
        self, requested: Optional[Location], last_known: Optional[Location]
    ) -> Optional[Location]:
        if requested is not None:
            if requested.city is None and self._geocoder is not None:
                return await self._geocoder.resolve(requested)
            return requested
        return last_known
