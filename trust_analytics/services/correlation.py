"""Canonical view of relationship data across property-naming generations.

Vote events written by older clients point at the rated response with a
``promptId`` (or ``prompt_id``) property; current clients send ``turn_id`` /
``turnId``. Every path that needs a turn identifier (ingestion, the legacy
migration and read-time analytics) goes through the functions below so the
precedence rules cannot drift apart.
"""
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from trust_analytics.core.errors import StorageError
from trust_analytics.models.event import Event, EventType, TURN_EVENT_TYPES
from trust_analytics.schemas.analytics import TurnVoteCorrelation

logger = structlog.get_logger()

TURN_ID_KEYS = ("turn_id", "turnId")
LEGACY_PROMPT_KEYS = ("promptId", "prompt_id")
UNKNOWN_TURN_PREFIX = "unknown_turn_"

_DIGITS = re.compile(r"[0-9]+")
_MAX_SEQUENCE = 2 ** 31 - 1
_TRUE_STRINGS = {"true", "1", "yes"}


def extract(properties: Any, *keys: str) -> Any:
    """Return the first present value among ``keys``.

    Fails closed: a non-mapping bag, missing keys, ``None`` and empty strings
    all yield ``None``.
    """
    if not isinstance(properties, Mapping):
        return None
    for key in keys:
        value = properties.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _as_identifier(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def coerce_turn_sequence(value: Any) -> int | None:
    """Normalize a turn sequence to a positive integer or None.

    Strings and numbers follow the same rule: after trimming, the text must be
    non-empty decimal digits parsing to a value above zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 < value <= _MAX_SEQUENCE else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not _DIGITS.fullmatch(text) or len(text.lstrip("0")) > 10:
        return None
    number = int(text)
    if number <= 0 or number > _MAX_SEQUENCE:
        return None
    return number


def _coerce_count(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= _MAX_SEQUENCE else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not _DIGITS.fullmatch(text) or len(text.lstrip("0")) > 10:
        return None
    number = int(text)
    return number if number <= _MAX_SEQUENCE else None


def _coerce_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def resolve_turn_id(properties: Any) -> str | None:
    """Turn identifier carried by a turn event, if any"""
    return _as_identifier(extract(properties, *TURN_ID_KEYS))


def resolve_vote_turn_id(event_id: str, properties: Any) -> str:
    """Canonical turn identifier for a vote.

    Precedence: explicit turn id, then the legacy prompt id, then an id
    synthesized from the vote's own event id. Never returns None.
    """
    return (
        resolve_turn_id(properties)
        or _as_identifier(extract(properties, *LEGACY_PROMPT_KEYS))
        or f"{UNKNOWN_TURN_PREFIX}{event_id}"
    )


def resolve_conversation_id(properties: Any, explicit: str | None = None) -> str | None:
    return explicit or _as_identifier(extract(properties, "conversationId", "conversation_id"))


def resolve_journey_name(properties: Any, explicit: str | None = None) -> str | None:
    return _as_identifier(extract(properties, "journeyName", "journey_name")) or explicit


def coerce_vote_value(value: Any) -> int | None:
    """Map a vote value onto 1 / -1 / 0; unreadable values are None"""
    if isinstance(value, bool):
        return 1 if value else -1
    number = _coerce_number(value)
    if number is None:
        return None
    if number > 0:
        return 1
    if number < 0:
        return -1
    return 0


def is_completion_step(properties: Any) -> bool:
    flag = extract(properties, "completed", "isCompleted", "journeyCompleted")
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, (int, float)):
        return flag == 1
    if isinstance(flag, str):
        return flag.strip().lower() in _TRUE_STRINGS
    return False


def normalize_relationships(
        event_type: str,
        event_id: str,
        properties: Any,
        journey_id: str | None = None,
        conversation_id: str | None = None,
        turn_sequence: Any = None
) -> dict[str, Any]:
    """Normalized relationship columns for an event about to be stored"""
    sequence = coerce_turn_sequence(turn_sequence)
    if sequence is None:
        sequence = coerce_turn_sequence(extract(properties, "turn_sequence", "turnSequence"))

    if event_type == EventType.JOURNEY_STEP:
        journey_id = resolve_journey_name(properties, journey_id)
    else:
        journey_id = journey_id or _as_identifier(extract(properties, "journeyId", "journey_id"))

    if event_type == EventType.VOTE_CAST:
        turn_id = resolve_vote_turn_id(event_id, properties)
    elif event_type in TURN_EVENT_TYPES:
        turn_id = resolve_turn_id(properties)
    else:
        turn_id = None

    return {
        "journey_id": journey_id,
        "conversation_id": resolve_conversation_id(properties, conversation_id),
        "turn_sequence": sequence,
        "turn_id": turn_id,
    }


# Typed views over the open property bag


@dataclass(frozen=True)
class VoteSignal:
    event_id: str
    user_id: str
    timestamp: int
    turn_id: str
    value: int | None
    comment: str | None

    @property
    def positive(self) -> bool:
        return self.value == 1

    @property
    def outcome(self) -> int:
        return 1 if self.positive else 0


@dataclass(frozen=True)
class TurnSignal:
    event_id: str
    user_id: str
    timestamp: int
    event_type: str
    turn_id: str | None
    conversation_id: str | None
    turn_sequence: int | None
    response_time: float | None


@dataclass(frozen=True)
class ConversationBoundary:
    event_id: str
    user_id: str
    timestamp: int
    conversation_id: str | None
    started: bool
    message_count: int | None


@dataclass(frozen=True)
class JourneyStep:
    event_id: str
    user_id: str
    timestamp: int
    journey_name: str | None
    step_name: str | None
    completed: bool


def read_vote(event: Event) -> VoteSignal:
    properties = event.properties or {}
    comment = extract(properties, "comment")
    return VoteSignal(
        event_id=event.event_id,
        user_id=event.user_id,
        timestamp=event.timestamp,
        turn_id=event.turn_id or resolve_vote_turn_id(event.event_id, properties),
        value=coerce_vote_value(extract(properties, "value")),
        comment=comment.strip() if isinstance(comment, str) else None
    )


def read_turn(event: Event) -> TurnSignal:
    properties = event.properties or {}
    return TurnSignal(
        event_id=event.event_id,
        user_id=event.user_id,
        timestamp=event.timestamp,
        event_type=event.event_type,
        turn_id=event.turn_id or resolve_turn_id(properties),
        conversation_id=resolve_conversation_id(properties, event.conversation_id),
        turn_sequence=event.turn_sequence if event.turn_sequence is not None else coerce_turn_sequence(
            extract(properties, "turn_sequence", "turnSequence")
        ),
        response_time=_coerce_number(extract(properties, "responseTime", "response_time"))
    )


def read_conversation_boundary(event: Event) -> ConversationBoundary:
    properties = event.properties or {}
    return ConversationBoundary(
        event_id=event.event_id,
        user_id=event.user_id,
        timestamp=event.timestamp,
        conversation_id=resolve_conversation_id(properties, event.conversation_id),
        started=event.event_type == EventType.CONVERSATION_STARTED,
        message_count=_coerce_count(extract(properties, "messageCount", "message_count"))
    )


def read_journey_step(event: Event) -> JourneyStep:
    properties = event.properties or {}
    return JourneyStep(
        event_id=event.event_id,
        user_id=event.user_id,
        timestamp=event.timestamp,
        journey_name=resolve_journey_name(properties, event.journey_id),
        step_name=_as_identifier(extract(properties, "stepName", "step_name", "step")),
        completed=is_completion_step(properties)
    )


_READERS = {
    EventType.VOTE_CAST: read_vote,
    EventType.TURN_CREATED: read_turn,
    EventType.TURN_COMPLETED: read_turn,
    EventType.TURN_FAILED: read_turn,
    EventType.CONVERSATION_STARTED: read_conversation_boundary,
    EventType.CONVERSATION_ENDED: read_conversation_boundary,
    EventType.JOURNEY_STEP: read_journey_step,
}


def read_event(event: Event):
    """Typed view for an event, or None for types with no structured reading"""
    try:
        reader = _READERS[EventType(event.event_type)]
    except (KeyError, ValueError):
        return None
    return reader(event)


class CorrelationService:
    """Joins turns to the votes that rate them"""

    def __init__(self, db: Session):
        self.db = db

    def _turn_clause(self, turn_id: str):
        legacy = [Event.properties[key].as_string() == turn_id for key in TURN_ID_KEYS]
        return or_(Event.turn_id == turn_id, and_(Event.turn_id.is_(None), or_(*legacy)))

    def _vote_clause(self, turn_id: str):
        keys = TURN_ID_KEYS + LEGACY_PROMPT_KEYS
        legacy = [Event.properties[key].as_string() == turn_id for key in keys]
        if turn_id.startswith(UNKNOWN_TURN_PREFIX):
            legacy.append(Event.event_id == turn_id[len(UNKNOWN_TURN_PREFIX):])
        return or_(Event.turn_id == turn_id, and_(Event.turn_id.is_(None), or_(*legacy)))

    def _candidates(self, event_type: EventType, clause, operation: str) -> list[Event]:
        try:
            return list(self.db.execute(
                select(Event)
                .where(Event.event_type == event_type.value, clause)
                .order_by(Event.timestamp.desc(), Event.event_id)
            ).scalars().all())
        except SQLAlchemyError as e:
            logger.error("correlation_query_failed", operation=operation, error=str(e))
            raise StorageError(operation, str(e)) from e

    def vote_events_for_turn(self, turn_id: str) -> list[Event]:
        """Votes whose canonical turn id is ``turn_id``, newest first"""
        votes = self._candidates(EventType.VOTE_CAST, self._vote_clause(turn_id), "vote_events_for_turn")
        # SQL narrows candidates; precedence decides the actual match
        return [v for v in votes if read_vote(v).turn_id == turn_id]

    def resolve_turn_vote_correlation(self, turn_id: str) -> TurnVoteCorrelation | None:
        """Matching turn completion and vote for a canonical turn id.

        Returns None only when neither side exists. When several votes rate
        the same turn the most recent one is reported.
        """
        turns = self._candidates(
            EventType.TURN_COMPLETED, self._turn_clause(turn_id), "resolve_turn_vote_correlation"
        )
        turn_row = next((t for t in turns if read_turn(t).turn_id == turn_id), None)
        vote_row = next(iter(self.vote_events_for_turn(turn_id)), None)

        if turn_row is None and vote_row is None:
            return None

        turn = read_turn(turn_row) if turn_row else None
        vote = read_vote(vote_row) if vote_row else None

        return TurnVoteCorrelation(
            turn_id=turn_id,
            turn_event_id=turn.event_id if turn else None,
            turn_timestamp=turn.timestamp if turn else None,
            vote_event_id=vote.event_id if vote else None,
            vote_value=vote.value if vote else None,
            vote_comment=vote.comment if vote else None,
            vote_timestamp=vote.timestamp if vote else None,
            user_id=turn.user_id if turn else vote.user_id,
            journey_id=turn_row.journey_id if turn_row else None,
            conversation_id=turn.conversation_id if turn else None,
            turn_sequence=turn.turn_sequence if turn else None
        )


def turns_with_feedback(turns: list[TurnSignal], votes: list[VoteSignal]) -> int:
    """Number of distinct turns that received at least one vote"""
    voted = {vote.turn_id for vote in votes}
    return len({turn.turn_id for turn in turns if turn.turn_id and turn.turn_id in voted})
