# GET /api/stats/* (legacy feedback stats)

from fastapi import APIRouter, Depends, Query
import structlog

from trust_analytics.api.deps import get_engine, require_api_key
from trust_analytics.schemas.analytics import BasicStats, PromptStats
from trust_analytics.services.analytics import AnalyticsEngine

logger = structlog.get_logger()
router = APIRouter(prefix="/api/stats", tags=["stats"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=BasicStats)
def get_user_stats(
        user_id: str = Query(..., alias="userId", min_length=1),
        engine: AnalyticsEngine = Depends(get_engine)
):
    """
    All-time feedback summary for one user.

    - **userId**: user whose votes are summarized
    """
    stats = engine.basic_stats(user_id)
    logger.info("user_stats_served", user_id=user_id, total_votes=stats.total_votes)
    return stats


@router.get("/prompt/{prompt_id}", response_model=PromptStats)
def get_prompt_stats(prompt_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    """
    Feedback for one prompt.

    Matches votes by their canonical turn id, so both `turn_id` and legacy
    `promptId` votes are counted.
    """
    stats = engine.prompt_stats(prompt_id)
    logger.info("prompt_stats_served", prompt_id=prompt_id, total_votes=stats.total_votes)
    return stats
