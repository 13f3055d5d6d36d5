# GET /api/dashboard, /api/analytics/*, /api/turns/*

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
import structlog

from trust_analytics.api.deps import get_engine, require_api_key
from trust_analytics.core.database import get_db
from trust_analytics.schemas.analytics import (
    DashboardData,
    JourneyAnalytics,
    OverviewAnalytics,
    TurnAnalytics,
    TurnVoteCorrelation,
    VoteAnalytics,
)
from trust_analytics.services.analytics import AnalyticsEngine, DateRange
from trust_analytics.services.correlation import CorrelationService

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["analytics"], dependencies=[Depends(require_api_key)])


def date_range_params(
        time_range: str | None = Query(default=None, alias="timeRange", description="24h, 7d, 30d, 90d, 365d or ALL"),
        start: int | None = Query(default=None, description="Epoch milliseconds, inclusive"),
        end: int | None = Query(default=None, description="Epoch milliseconds, exclusive"),
        engine: AnalyticsEngine = Depends(get_engine)
) -> DateRange:
    return engine.resolve_date_range(time_range, start, end)


@router.get("/dashboard", response_model=DashboardData)
def get_dashboard(
        date_range: DateRange = Depends(date_range_params),
        engine: AnalyticsEngine = Depends(get_engine)
):
    """
    Full dashboard for a date range.

    - **timeRange**: symbolic range, defaults to 30d
    - **start** / **end**: explicit bounds, mutually exclusive with timeRange
    """
    return engine.dashboard(date_range)


@router.get("/analytics/overview", response_model=OverviewAnalytics)
def get_overview(
        date_range: DateRange = Depends(date_range_params),
        engine: AnalyticsEngine = Depends(get_engine)
):
    return engine.overview(date_range)


@router.get("/analytics/votes", response_model=VoteAnalytics)
def get_vote_analytics(
        date_range: DateRange = Depends(date_range_params),
        engine: AnalyticsEngine = Depends(get_engine)
):
    return engine.vote_analytics(date_range)


@router.get("/analytics/turns", response_model=TurnAnalytics)
def get_turn_analytics(
        date_range: DateRange = Depends(date_range_params),
        engine: AnalyticsEngine = Depends(get_engine)
):
    return engine.turn_analytics(date_range)


@router.get("/analytics/journeys", response_model=JourneyAnalytics)
def get_journey_analytics(
        date_range: DateRange = Depends(date_range_params),
        engine: AnalyticsEngine = Depends(get_engine)
):
    return engine.journey_analytics(date_range)


@router.get("/turns/{turn_id}/correlation", response_model=TurnVoteCorrelation)
def get_turn_correlation(turn_id: str, db: Session = Depends(get_db)):
    """The completed turn and the vote that rates it; 404 when neither exists"""
    correlation = CorrelationService(db).resolve_turn_vote_correlation(turn_id)
    if correlation is None:
        logger.info("turn_correlation_not_found", turn_id=turn_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No turn or vote found for {turn_id}"
        )
    return correlation
