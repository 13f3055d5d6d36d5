# SQLAlchemy models

from enum import Enum

from sqlalchemy import BigInteger, Column, Index, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class EventType(str, Enum):
    """Closed set of event types accepted at ingestion"""

    TURN_CREATED = "turn_created"
    TURN_COMPLETED = "turn_completed"
    TURN_FAILED = "turn_failed"
    USER_ACTION = "user_action"
    VOTE_CAST = "vote_cast"
    JOURNEY_STEP = "journey_step"
    CONVERSATION_STARTED = "conversation_started"
    CONVERSATION_ENDED = "conversation_ended"
    REGENERATION_REQUESTED = "regeneration_requested"
    FRUSTRATION_DETECTED = "frustration_detected"


TURN_EVENT_TYPES = (EventType.TURN_CREATED, EventType.TURN_COMPLETED, EventType.TURN_FAILED)
TURN_OUTCOME_TYPES = (EventType.TURN_COMPLETED, EventType.TURN_FAILED)


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(255), primary_key=True)
    user_id = Column(String(255), nullable=False)
    event_type = Column(String(64), nullable=False)
    timestamp = Column(BigInteger, nullable=False, index=True)  # epoch milliseconds
    properties = Column(JSON, nullable=False, default=dict)

    # Normalized relationship fields, null for events that predate them
    journey_id = Column(String(255), nullable=True)
    conversation_id = Column(String(255), nullable=True)
    turn_sequence = Column(Integer, nullable=True)
    turn_id = Column(String(255), nullable=True)

    prompt_text = Column(Text, nullable=True)
    ai_response = Column(Text, nullable=True)

    __table_args__ = (
        # Composite indexes for common query patterns
        Index('idx_events_user_timestamp', 'user_id', 'timestamp'),
        Index('idx_events_type_timestamp', 'event_type', 'timestamp'),
        Index('idx_events_journey', 'journey_id', 'timestamp'),
        Index('idx_events_conversation', 'conversation_id', 'turn_sequence', 'timestamp'),
        Index('idx_events_turn', 'turn_id', 'timestamp'),
    )

    def __repr__(self) -> str:
        return f"<Event {self.event_id} {self.event_type} @{self.timestamp}>"
