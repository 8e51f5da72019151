"""
Interaction endpoints:
  POST /interactions            — track one interaction (learning runs in the background)
  POST /interactions/feedback   — explicit feedback on a served item
  GET  /interactions/analytics  — per-type interaction stats for a user
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from feedrank.ranking.errors import NotFoundError
from feedrank.schemas import (
    AcceptedResponse,
    AnalyticsResponse,
    FeedbackRequest,
    InteractionRequest,
)
from feedrank.service import FeedService, get_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def track_interaction(
    body: InteractionRequest, service: FeedService = Depends(get_service)
):
    """Always acknowledged; recording failures are logged, never returned."""
    service.track_interaction(
        body.user_id,
        body.target_type,
        body.target_id,
        body.interaction_type,
        body.interaction_metadata(),
    )
    return AcceptedResponse(message="Interaction accepted")


@router.post("/feedback", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def provide_feedback(
    body: FeedbackRequest, service: FeedService = Depends(get_service)
):
    service.provide_feedback(body.user_id, body.item_id, body.feedback, body.reason)
    return AcceptedResponse(message="Feedback recorded")


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    user_id: str = Query(...),
    days: int = Query(7, ge=1, le=90),
    service: FeedService = Depends(get_service),
):
    try:
        return await service.get_analytics(user_id, days)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
