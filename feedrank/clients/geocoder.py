"""
Reverse-geocoding client (OpenCage) used by the context builder.

A request that supplies coordinates but no city is resolved to a city and
country so the location scorer can match city names. Failures never block
the feed: the caller keeps the bare coordinates.

  GET {geocoder_url}?q=<lat>+<lon>&key=<api key>&no_annotations=1&limit=1
"""
import logging
from typing import Optional

import httpx

from feedrank.ranking.types import Location

logger = logging.getLogger(__name__)


class GeocoderClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()

    async def resolve(self, location: Location) -> Location:
        """Return `location` with city/country filled in when the lookup succeeds."""
        if self._http is None:
            await self.start()
        params = {
            # encoded as "<lat>+<lon>"
            "q": f"{location.latitude} {location.longitude}",
            "key": self.api_key,
            "no_annotations": 1,
            "limit": 1,
        }
        try:
            resp = await self._http.get(self.base_url, params=params)
            resp.raise_for_status()
            results = resp.json().get("results", [])
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Reverse geocoding failed for (%.4f, %.4f): %s",
                location.latitude, location.longitude, exc,
            )
            return location

        if not results:
            return location
        components = results[0].get("components", {})
        city = (
            components.get("city")
            or components.get("town")
            or components.get("village")
        )
        return Location(
            latitude=location.latitude,
            longitude=location.longitude,
            city=location.city or city,
            country=location.country or components.get("country"),
        )
