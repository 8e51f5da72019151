"""
Preference endpoints:
  GET   /preferences/{user_id}  — current record (created with defaults on first access)
  PATCH /preferences/{user_id}  — partial update of weights and block lists
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from feedrank.ranking.errors import NotFoundError, PreferenceConflict
from feedrank.schemas import PreferenceResponse, PreferenceUpdate
from feedrank.service import FeedService, get_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{user_id}", response_model=PreferenceResponse)
async def get_preferences(user_id: str, service: FeedService = Depends(get_service)):
    try:
        record = await service.get_preferences(user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return PreferenceResponse.from_record(record)


@router.patch("/{user_id}", response_model=PreferenceResponse)
async def update_preferences(
    user_id: str,
    body: PreferenceUpdate,
    service: FeedService = Depends(get_service),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    try:
        record = await service.update_preferences(user_id, changes)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except PreferenceConflict:
        logger.warning("Preference update for user %s lost every retry", user_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Preferences were modified concurrently, retry the request",
        )
    return PreferenceResponse.from_record(record)
