from datetime import timedelta

import httpx
import pytest

from feedrank.clients.geocoder import GeocoderClient
from feedrank.ranking.context import ContextBuilder
from feedrank.ranking.errors import NotFoundError
from feedrank.ranking.types import InteractionRecord, Location, UserProfile

from conftest import NOW, InMemoryInteractionLog, InMemoryPreferenceStore, InMemoryUserRepository

OPENCAGE_PARIS = {
    "results": [
        {"components": {"city": "Paris", "country": "France", "country_code": "fr"}}
    ]
}


def _geocoder(handler) -> GeocoderClient:
    return GeocoderClient(
        "https://geocoder.test/v1/json", "test-key", transport=httpx.MockTransport(handler)
    )


def _builder(profile: UserProfile, geocoder=None, interactions=None) -> ContextBuilder:
    return ContextBuilder(
        InMemoryUserRepository([profile]),
        InMemoryPreferenceStore(),
        interactions or InMemoryInteractionLog(),
        geocoder=geocoder,
        clock=lambda: NOW,
    )


async def test_context_carries_graph_time_and_fresh_preferences() -> None:
    profile = UserProfile("viewer", following_ids={"a", "b"}, follower_ids={"c"})

    context = await _builder(profile).build("viewer")

    assert context.following_ids == {"a", "b"}
    assert context.connection_ids == {"a", "b", "c"}
    assert (context.hour, context.day_of_week) == (12, 3)
    assert len(context.preferences.active_hours) == 24
    assert context.location is None


async def test_recent_interactions_are_windowed_newest_first() -> None:
    log = InMemoryInteractionLog()
    for days_ago in (10, 3, 1):
        await log.append(
            InteractionRecord(
                "viewer", "post", f"p{days_ago}", "view",
                created_at=NOW - timedelta(days=days_ago),
            )
        )

    context = await _builder(UserProfile("viewer"), interactions=log).build("viewer")

    assert [i.target_id for i in context.recent_interactions] == ["p1", "p3"]


async def test_unknown_user_raises() -> None:
    with pytest.raises(NotFoundError):
        await _builder(UserProfile("viewer")).build("someone-else")


async def test_falls_back_to_last_known_location() -> None:
    home = Location(52.52, 13.405, city="Berlin", country="Germany")

    context = await _builder(UserProfile("viewer", last_location=home)).build("viewer")

    assert context.location == home


async def test_request_location_is_reverse_geocoded() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=OPENCAGE_PARIS)

    geocoder = _geocoder(handler)
    await geocoder.start()
    try:
        context = await _builder(UserProfile("viewer"), geocoder).build(
            "viewer", Location(48.8566, 2.3522)
        )
    finally:
        await geocoder.stop()

    assert context.location == Location(48.8566, 2.3522, city="Paris", country="France")
    assert seen["key"] == "test-key"
    assert seen["q"] == "48.8566 2.3522"


async def test_request_city_skips_geocoding() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("geocoder should not be called")

    requested = Location(48.8566, 2.3522, city="Paris")

    context = await _builder(UserProfile("viewer"), _geocoder(handler)).build("viewer", requested)

    assert context.location == requested


async def test_geocoder_failure_keeps_coordinates() -> None:
    geocoder = _geocoder(lambda request: httpx.Response(503))

    context = await _builder(UserProfile("viewer"), geocoder).build(
        "viewer", Location(48.8566, 2.3522)
    )
    await geocoder.stop()

    assert context.location == Location(48.8566, 2.3522)


async def test_shown_items_count_as_interacted_only_on_first_page() -> None:
    log = InMemoryInteractionLog()
    await log.append(InteractionRecord("viewer", "post", "served", "recommendation_shown",
                                       created_at=NOW))
    await log.append(InteractionRecord("viewer", "post", "liked", "like", created_at=NOW))
    builder = _builder(UserProfile("viewer"), interactions=log)

    first = await builder.build("viewer")
    deeper = await builder.build("viewer", exclude_shown=False)

    assert first.interacted_item_ids() == {"served", "liked"}
    assert deeper.interacted_item_ids() == {"liked"}
