from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from trust_analytics.core.errors import EventValidationError, StorageError
from trust_analytics.models.event import Event
from trust_analytics.schemas.event import EventCreate, EventFilters
from trust_analytics.services import migration
from trust_analytics.services.cache import ResultCache
from trust_analytics.services.correlation import normalize_relationships

logger = structlog.get_logger()

# Keeps multi-row statements under SQLite's bound-parameter limit
_CHUNK_SIZE = 500


@dataclass
class EventOutcome:
    """What happened to one submitted event"""
    index: int
    event_id: str | None
    status: Literal["processed", "skipped", "error"]
    error: str | None = None


@dataclass
class BatchResult:
    outcomes: list[EventOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "processed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")

    @property
    def errors(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "error")

    @property
    def event_ids(self) -> list[str]:
        return [o.event_id for o in self.outcomes if o.status == "processed"]

    @property
    def failures(self) -> list[EventOutcome]:
        return [o for o in self.outcomes if o.status == "error"]


def _raw_event_id(raw: Any) -> str | None:
    if isinstance(raw, EventCreate):
        return raw.event_id
    if isinstance(raw, Mapping):
        value = raw.get("eventId", raw.get("event_id"))
        return str(value) if value is not None else None
    return None


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'event'}: {err['msg']}"
        for err in error.errors()
    )


class EventStore:
    """Durable event log with idempotent ingestion and range queries"""

    def __init__(self, db: Session, cache: ResultCache | None = None):
        self.db = db
        self.cache = cache
        self.scans = 0

    @staticmethod
    def validate(raw: EventCreate | Mapping[str, Any]) -> EventCreate:
        """Parse one submitted event; raises EventValidationError"""
        if isinstance(raw, EventCreate):
            return raw
        try:
            return EventCreate.model_validate(raw)
        except ValidationError as e:
            raise EventValidationError(_describe(e), _raw_event_id(raw)) from e

    def insert(self, event: EventCreate | Mapping[str, Any]) -> EventOutcome:
        """Insert one event; duplicates are skipped, invalid events are reported"""
        return self.insert_batch([event]).outcomes[0]

    def insert_batch(self, events: Iterable[EventCreate | Mapping[str, Any]]) -> BatchResult:
        """
        Ingest events with idempotency and per-record outcomes.

        A malformed record never aborts its siblings. Duplicate event_ids,
        within the batch or against storage, are counted as skipped.

        Raises:
            StorageError: the write could not be committed; nothing was stored
        """
        events = list(events)
        outcomes: list[EventOutcome | None] = [None] * len(events)
        candidates: list[tuple[int, EventCreate]] = []
        seen: set[str] = set()

        for index, raw in enumerate(events):
            try:
                event = self.validate(raw)
            except EventValidationError as e:
                outcomes[index] = EventOutcome(index, e.event_id, "error", str(e))
                continue

            if event.event_id in seen:
                outcomes[index] = EventOutcome(index, event.event_id, "skipped")
                continue
            seen.add(event.event_id)
            candidates.append((index, event))

        existing_ids = self._existing_ids([event.event_id for _, event in candidates])

        rows = []
        for index, event in candidates:
            if event.event_id in existing_ids:
                outcomes[index] = EventOutcome(index, event.event_id, "skipped")
            else:
                rows.append(self._to_row(event))
                outcomes[index] = EventOutcome(index, event.event_id, "processed")

        if rows:
            try:
                for start in range(0, len(rows), _CHUNK_SIZE):
                    self.db.execute(self._insert_ignoring_duplicates(rows[start:start + _CHUNK_SIZE]))
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("event_insert_failed", count=len(rows), error=str(e))
                raise StorageError("insert_batch", str(e)) from e

            self._invalidate_cache()

        result = BatchResult(outcomes=outcomes)

        logger.info(
            "events_ingested",
            total=len(events),
            processed=result.processed,
            skipped=result.skipped,
            errors=result.errors
        )

        return result

    def get(self, event_id: str) -> Event | None:
        """Point lookup; None when the event does not exist"""
        try:
            return self.db.get(Event, event_id)
        except SQLAlchemyError as e:
            logger.error("event_lookup_failed", event_id=event_id, error=str(e))
            raise StorageError("get", str(e)) from e

    def query(self, filters: EventFilters) -> list[Event]:
        """Filtered events, newest first, honoring limit/offset"""
        stmt = (
            select(Event)
            .where(*self._conditions(filters))
            .order_by(Event.timestamp.desc(), Event.event_id.desc())
            .offset(filters.offset)
        )
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)

        return self._fetch(stmt, "query")

    def count(self, filters: EventFilters) -> int:
        stmt = select(func.count()).select_from(Event).where(*self._conditions(filters))
        try:
            return self.db.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error("event_count_failed", error=str(e))
            raise StorageError("count", str(e)) from e

    def scan(self, filters: EventFilters, max_rows: int | None = None) -> tuple[list[Event], bool]:
        """
        Read a window for aggregation.

        Keeps the newest ``max_rows`` events when the window is larger.

        Returns:
            (events oldest first, whether the window was truncated)
        """
        self.scans += 1

        stmt = (
            select(Event)
            .where(*self._conditions(filters))
            .order_by(Event.timestamp.desc(), Event.event_id.desc())
        )
        if max_rows is not None:
            stmt = stmt.limit(max_rows + 1)

        events = self._fetch(stmt, "scan")
        truncated = max_rows is not None and len(events) > max_rows
        if truncated:
            events = events[:max_rows]
            logger.warning("event_scan_truncated", max_rows=max_rows)

        events.reverse()
        return events, truncated

    def migrate_legacy_fields(self) -> dict[str, int]:
        """Normalize legacy relationship properties across the whole store"""
        try:
            report = migration.backfill_relationship_fields(self.db)
            report.update(migration.unify_vote_turn_ids(self.db))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("legacy_migration_failed", error=str(e))
            raise StorageError("migrate_legacy_fields", str(e)) from e

        self._invalidate_cache()
        logger.info("legacy_migration_completed", **report)
        return report

    def _invalidate_cache(self) -> None:
        # Only ever called after a successful commit
        if self.cache is not None:
            self.cache.invalidate_all()

    def _conditions(self, filters: EventFilters) -> list:
        conditions = []
        if filters.start is not None:
            conditions.append(Event.timestamp >= filters.start)
        if filters.end is not None:
            conditions.append(Event.timestamp < filters.end)
        if filters.event_types:
            conditions.append(Event.event_type.in_([t.value for t in filters.event_types]))
        if filters.user_id:
            conditions.append(Event.user_id == filters.user_id)
        if filters.journey_id:
            conditions.append(Event.journey_id == filters.journey_id)
        if filters.conversation_id:
            conditions.append(Event.conversation_id == filters.conversation_id)
        return conditions

    def _fetch(self, stmt, operation: str) -> list[Event]:
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error("event_query_failed", operation=operation, error=str(e))
            raise StorageError(operation, str(e)) from e

    def _existing_ids(self, event_ids: list[str]) -> set[str]:
        existing: set[str] = set()
        try:
            for start in range(0, len(event_ids), _CHUNK_SIZE):
                chunk = event_ids[start:start + _CHUNK_SIZE]
                result = self.db.execute(select(Event.event_id).where(Event.event_id.in_(chunk)))
                existing.update(row[0] for row in result.fetchall())
        except SQLAlchemyError as e:
            logger.error("duplicate_check_failed", error=str(e))
            raise StorageError("insert_batch", str(e)) from e
        return existing

    def _insert_ignoring_duplicates(self, rows: list[dict[str, Any]]):
        # INSERT ... ON CONFLICT DO NOTHING guards against a concurrent writer
        if self.db.get_bind().dialect.name == "postgresql":
            stmt = pg_insert(Event).values(rows)
        else:
            stmt = sqlite_insert(Event).values(rows)
        return stmt.on_conflict_do_nothing(index_elements=['event_id'])

    @staticmethod
    def _to_row(event: EventCreate) -> dict[str, Any]:
        relationships = normalize_relationships(
            event.event_type,
            event.event_id,
            event.properties,
            journey_id=event.journey_id,
            conversation_id=event.conversation_id,
            turn_sequence=event.turn_sequence
        )
        return {
            "event_id": event.event_id,
            "user_id": event.user_id,
            "event_type": event.event_type.value,
            "timestamp": event.timestamp,
            "properties": event.properties,
            "prompt_text": event.prompt_text,
            "ai_response": event.ai_response,
            **relationships
        }
