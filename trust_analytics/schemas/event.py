# Pydantic schemas

from typing import Any

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from trust_analytics.models.event import EventType
from trust_analytics.schemas.base import CamelModel
from trust_analytics.services.correlation import coerce_turn_sequence

# 9999-12-31T23:59:59.999Z, the last instant a calendar date can hold
MAX_TIMESTAMP_MS = 253_402_300_799_999


class EventCreate(CamelModel):
    """Schema for creating a single event"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore"
    )

    event_id: str = Field(..., min_length=1, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255)
    event_type: EventType
    timestamp: int = Field(..., ge=0, le=MAX_TIMESTAMP_MS, description="Epoch milliseconds")
    properties: dict[str, Any] = Field(default_factory=dict)
    prompt_text: str | None = None
    ai_response: str | None = None
    journey_id: str | None = Field(default=None, max_length=255)
    conversation_id: str | None = Field(default=None, max_length=255)
    turn_sequence: int | None = None

    @field_validator('event_id', 'user_id')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Field cannot be empty or whitespace')
        return v.strip()

    @field_validator('properties', mode='before')
    @classmethod
    def default_properties(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator('turn_sequence', mode='before')
    @classmethod
    def normalize_turn_sequence(cls, v: Any) -> int | None:
        return coerce_turn_sequence(v)


class EventBatchCreate(CamelModel):
    """Schema for batch event creation.

    Items stay untyped here so one malformed event is reported per record
    instead of rejecting the whole request.
    """

    events: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)


class EventResponse(CamelModel):
    """Response schema for event operations"""

    event_id: str
    user_id: str
    event_type: str
    timestamp: int
    properties: dict[str, Any]
    journey_id: str | None = None
    conversation_id: str | None = None
    turn_sequence: int | None = None
    turn_id: str | None = None
    prompt_text: str | None = None
    ai_response: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class EventListResponse(CamelModel):
    events: list[EventResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class EventFailure(CamelModel):
    index: int
    event_id: str | None = None
    error: str


class BatchIngestResponse(CamelModel):
    """Response for batch ingestion"""

    total_received: int
    processed: int
    skipped: int
    errors: int
    event_ids: list[str]
    failures: list[EventFailure] = Field(default_factory=list)
    message: str


class EventFilters(CamelModel):
    """Filters for event range queries; the time range is half-open [start, end)"""

    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)
    event_types: list[EventType] | None = None
    user_id: str | None = None
    journey_id: str | None = None
    conversation_id: str | None = None
    limit: int | None = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def validate_range(self) -> 'EventFilters':
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("'end' must be after 'start'")
        return self
