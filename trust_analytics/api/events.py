from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
import structlog

from trust_analytics.api.deps import get_store, require_api_key
from trust_analytics.core.config import settings
from trust_analytics.core.errors import InvalidQueryError
from trust_analytics.models.event import EventType
from trust_analytics.schemas.event import (
    BatchIngestResponse,
    EventFailure,
    EventFilters,
    EventListResponse,
    EventResponse,
)
from trust_analytics.services.analytics import resolve_date_range
from trust_analytics.services.event_store import EventStore

logger = structlog.get_logger()
router = APIRouter(prefix="/api/events", tags=["events"], dependencies=[Depends(require_api_key)])


def _unwrap_events(payload: Any) -> list:
    """Accept a single event, ``{"events": [...]}`` or a bare array"""
    if isinstance(payload, list):
        events = payload
    elif isinstance(payload, dict) and "events" in payload:
        events = payload["events"]
        if not isinstance(events, list):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="'events' must be an array"
            )
    elif isinstance(payload, dict):
        events = [payload]
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Body must be an event, an array of events or {\"events\": [...]}"
        )

    if not events:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="No events provided")
    if len(events) > settings.max_batch_size:
        logger.warning("batch_rejected", size=len(events), max_batch_size=settings.max_batch_size)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Batch exceeds the maximum of {settings.max_batch_size} events"
        )
    return events


def parse_event_types(raw: str | None) -> list[EventType] | None:
    if not raw:
        return None
    names = [name.strip() for name in raw.split(",") if name.strip()]
    try:
        return [EventType(name) for name in names] or None
    except ValueError as e:
        raise InvalidQueryError(f"Unknown eventType in '{raw}'") from e


@router.post("", response_model=BatchIngestResponse, status_code=status.HTTP_201_CREATED)
def ingest_events(
        payload: Any = Body(...),
        store: EventStore = Depends(get_store)
):
    """
    Ingest one or more events with idempotency.

    - Body: a single event, a bare array, or `{"events": [...]}` (max 1000)
    - Duplicate event_ids are skipped, malformed events are reported per record
    """
    events = _unwrap_events(payload)
    result = store.insert_batch(events)

    return BatchIngestResponse(
        total_received=len(events),
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        event_ids=result.event_ids,
        failures=[
            EventFailure(index=f.index, event_id=f.event_id, error=f.error or "invalid event")
            for f in result.failures
        ],
        message=f"Processed {result.processed} of {len(events)} events"
    )


@router.get("", response_model=EventListResponse)
def list_events(
        time_range: str | None = Query(default=None, alias="timeRange"),
        start: int | None = Query(default=None, description="Epoch milliseconds, inclusive"),
        end: int | None = Query(default=None, description="Epoch milliseconds, exclusive"),
        event_type: str | None = Query(default=None, alias="eventType", description="Comma-separated"),
        user_id: str | None = Query(default=None, alias="userId"),
        journey_id: str | None = Query(default=None, alias="journeyId"),
        conversation_id: str | None = Query(default=None, alias="conversationId"),
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
        store: EventStore = Depends(get_store)
):
    """List stored events, newest first"""
    window = None
    if time_range or start is not None or end is not None:
        window = resolve_date_range(time_range, start, end)

    try:
        filters = EventFilters(
            start=window.start if window else None,
            end=window.end if window else None,
            event_types=parse_event_types(event_type),
            user_id=user_id,
            journey_id=journey_id,
            conversation_id=conversation_id,
            limit=limit,
            offset=offset
        )
    except ValidationError as e:
        raise InvalidQueryError(str(e)) from e

    events = store.query(filters)
    total = store.count(filters)

    return EventListResponse(
        events=[EventResponse.model_validate(event) for event in events],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(events) < total
    )


@router.get("/{event_id}", response_model=EventResponse)
def get_event(event_id: str, store: EventStore = Depends(get_store)):
    event = store.get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Event {event_id} not found")
    return EventResponse.model_validate(event)
