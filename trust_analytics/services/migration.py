"""Store-wide normalization of legacy relationship properties.

Used by the alembic data revisions and by ``EventStore.migrate_legacy_fields``.
The write helpers flush but never commit; the caller owns the transaction.
"""
import time

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from trust_analytics.core.errors import StorageError
from trust_analytics.models.event import Event, EventType
from trust_analytics.services.correlation import (
    LEGACY_PROMPT_KEYS,
    UNKNOWN_TURN_PREFIX,
    normalize_relationships,
    resolve_vote_turn_id,
)

logger = structlog.get_logger()

_RELATIONSHIP_COLUMNS = ("journey_id", "conversation_id", "turn_sequence", "turn_id")
_LEGACY_VOTE_KEYS = LEGACY_PROMPT_KEYS + ("turnId",)


def backfill_relationship_fields(db: Session) -> dict[str, int]:
    """Populate empty relationship columns from the property bag"""
    stmt = select(Event).where(or_(*(getattr(Event, c).is_(None) for c in _RELATIONSHIP_COLUMNS)))
    updated = 0

    for event in db.execute(stmt).scalars().all():
        relationships = normalize_relationships(
            event.event_type,
            event.event_id,
            event.properties,
            journey_id=event.journey_id,
            conversation_id=event.conversation_id,
            turn_sequence=event.turn_sequence
        )
        changed = False
        for column, value in relationships.items():
            if getattr(event, column) is None and value is not None:
                setattr(event, column, value)
                changed = True
        if changed:
            updated += 1

    db.flush()
    logger.info("relationship_backfill_flushed", updated=updated)
    return {"relationships_backfilled": updated}


def unify_vote_turn_ids(db: Session) -> dict[str, int]:
    """Rewrite every vote to carry its canonical ``turn_id`` property.

    Legacy ``promptId`` / ``prompt_id`` / ``turnId`` keys are removed once
    their value has been folded into ``turn_id``.
    """
    stmt = select(Event).where(Event.event_type == EventType.VOTE_CAST.value)
    migrated = 0
    synthesized = 0

    for event in db.execute(stmt).scalars().all():
        properties = dict(event.properties or {})
        canonical = resolve_vote_turn_id(event.event_id, properties)
        has_legacy = any(key in properties for key in _LEGACY_VOTE_KEYS)

        if properties.get("turn_id") == canonical and event.turn_id == canonical and not has_legacy:
            continue

        for key in _LEGACY_VOTE_KEYS:
            properties.pop(key, None)
        properties["turn_id"] = canonical

        # Reassign so the JSON column is marked dirty
        event.properties = properties
        event.turn_id = canonical
        migrated += 1
        if canonical.startswith(UNKNOWN_TURN_PREFIX):
            synthesized += 1

    db.flush()
    logger.info("vote_turn_ids_unified", migrated=migrated, synthesized=synthesized)
    return {"votes_migrated": migrated, "turn_ids_synthesized": synthesized}


def validate_turn_id_migration(db: Session) -> dict:
    """Report whether every vote carries a ``turn_id`` and no legacy prompt id"""
    is_vote = Event.event_type == EventType.VOTE_CAST.value

    try:
        total_votes = db.execute(select(func.count()).select_from(Event).where(is_vote)).scalar_one()
        with_turn_id = db.execute(
            select(func.count()).select_from(Event).where(
                is_vote, Event.properties["turn_id"].as_string().is_not(None)
            )
        ).scalar_one()
        prompt_remaining = db.execute(
            select(func.count()).select_from(Event).where(
                is_vote,
                or_(*(Event.properties[key].as_string().is_not(None) for key in LEGACY_PROMPT_KEYS))
            )
        ).scalar_one()
    except SQLAlchemyError as e:
        logger.error("turn_id_validation_failed", error=str(e))
        raise StorageError("validate_turn_id_migration", str(e)) from e

    complete = total_votes > 0 and prompt_remaining == 0 and with_turn_id == total_votes

    return {
        "success": complete,
        "total_votes": total_votes,
        "votes_with_turn_id": with_turn_id,
        "votes_with_prompt_id_remaining": prompt_remaining,
        "migration_complete": complete,
    }


def validate_relationship_capture(db: Session, hours: float = 24, now_ms: int | None = None) -> dict:
    """Share of recent events that carry a journey or conversation relationship"""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    since = now_ms - int(hours * 3600 * 1000)
    has_relationship = or_(Event.journey_id.is_not(None), Event.conversation_id.is_not(None))

    stmt = (
        select(
            Event.event_type,
            func.count().label("total"),
            func.count(Event.event_id).filter(has_relationship).label("with_relationships")
        )
        .where(Event.timestamp >= since, Event.timestamp <= now_ms)
        .group_by(Event.event_type)
        .order_by(func.count().desc(), Event.event_type)
    )

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as e:
        logger.error("relationship_validation_failed", error=str(e))
        raise StorageError("validate_relationship_capture", str(e)) from e

    total = sum(row.total for row in rows)
    with_relationships = sum(row.with_relationships for row in rows)

    return {
        "success": True,
        "total_events": total,
        "events_with_relationships": with_relationships,
        "relationship_capture_rate": round(with_relationships / total * 100, 2) if total else None,
        "by_event_type": [
            {
                "event_type": row.event_type,
                "total": row.total,
                "with_relationships": row.with_relationships,
            }
            for row in rows
        ],
    }
