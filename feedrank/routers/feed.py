"""
Ranked feed endpoint — GET /feed?user_id=<id>

  context → multi-source retrieval → scoring → diversity → pagination

On any pipeline failure the response is the chronological fallback page
(`metadata.fallback = true`) rather than an error. Unknown users get 404.

Every served page is logged as `recommendation_shown`. A fresh `page=1`
request leaves those items out, so a refresh surfaces new content; `page>1`
keeps them ranked so offset pagination over one scroll does not skip items.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from feedrank.config import settings
from feedrank.ranking.errors import NotFoundError
from feedrank.ranking.types import FeedOptions, Location
from feedrank.schemas import FeedItemOut, FeedResponse
from feedrank.service import FeedService, get_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=FeedResponse)
async def get_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: int = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
    page: int = Query(1, ge=1),
    include_ads: bool = Query(True),
    diversity_factor: float = Query(settings.feed_default_diversity, ge=0.0, le=1.0),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    city: Optional[str] = None,
    country: Optional[str] = None,
    service: FeedService = Depends(get_service),
):
    location = None
    if latitude is not None and longitude is not None:
        location = Location(latitude, longitude, city=city, country=country)

    options = FeedOptions(
        limit=limit,
        page=page,
        include_ads=include_ads,
        diversity_factor=diversity_factor,
        location=location,
    )
    try:
        result = await service.get_feed(user_id, options)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return FeedResponse(
        user_id=user_id,
        items=[FeedItemOut.from_candidate(c) for c in result.items],
        metadata=result.metadata,
    )
