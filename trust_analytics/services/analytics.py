"""Dashboard and analytics computation over the event store.

Every public method reads one window from the store, derives its statistics
in memory and caches the finished response per (kind, date range).
"""
from collections import Counter
from dataclasses import dataclass, field
import time
from typing import Callable, Hashable

import structlog

from trust_analytics.core.config import Settings, settings
from trust_analytics.core.errors import InvalidQueryError
from trust_analytics.models.event import Event, EventType, TURN_EVENT_TYPES
from trust_analytics.schemas.analytics import (
    BasicStats,
    ConversationStats,
    DashboardData,
    DateRangeInfo,
    EventTypeCount,
    FeedbackStats,
    JourneyAnalytics,
    JourneyStats,
    OverviewAnalytics,
    PopularJourney,
    PromptStats,
    QualitySignals,
    RecentActivity,
    RecentEvent,
    TimeSeries,
    TrustScore,
    TurnAnalytics,
    TurnOverview,
    TurnTrends,
    VoteAnalytics,
    VoteOverview,
    VoteTrends,
)
from trust_analytics.schemas.event import EventFilters
from trust_analytics.services import scoring, timeseries
from trust_analytics.services.cache import ResultCache
from trust_analytics.services.correlation import (
    ConversationBoundary,
    CorrelationService,
    JourneyStep,
    TurnSignal,
    VoteSignal,
    read_event,
    read_vote,
    turns_with_feedback,
)
from trust_analytics.services.event_store import EventStore

logger = structlog.get_logger()

# Symbolic ranges and their length in days; ALL is unbounded
TIME_RANGES: dict[str, int | None] = {
    "24h": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "365d": 365,
    "ALL": None,
}


@dataclass(frozen=True)
class DateRange:
    """Half-open [start, end) window; either bound may be open"""
    start: int | None = None
    end: int | None = None
    label: str | None = None

    @property
    def cache_key(self) -> Hashable:
        # A symbolic range is the same question for the whole cache TTL
        return self.label if self.label else (self.start, self.end)

    def info(self) -> DateRangeInfo:
        return DateRangeInfo(start=self.start, end=self.end, label=self.label)

    def filters(self, event_types: list[EventType] | None = None, user_id: str | None = None) -> EventFilters:
        return EventFilters(
            start=self.start,
            end=self.end,
            event_types=event_types,
            user_id=user_id,
            limit=None
        )


def _normalize_label(time_range: str) -> str:
    label = time_range.strip()
    return label.upper() if label.upper() == "ALL" else label.lower()


def resolve_date_range(
        time_range: str | None = None,
        start: int | None = None,
        end: int | None = None,
        now_ms: int | None = None
) -> DateRange:
    """Turn a symbolic range or explicit bounds into a concrete window.

    Symbolic ranges end open so late-arriving events with a slightly
    future timestamp are still counted.

    Raises:
        InvalidQueryError: unknown label, negative bounds, end before start,
            or a label combined with explicit bounds
    """
    if time_range and (start is not None or end is not None):
        raise InvalidQueryError("timeRange cannot be combined with start/end")

    if start is not None or end is not None:
        if (start is not None and start < 0) or (end is not None and end < 0):
            raise InvalidQueryError("start and end must be non-negative epoch milliseconds")
        if start is not None and end is not None and end < start:
            raise InvalidQueryError("end must not be before start")
        return DateRange(start=start, end=end)

    label = _normalize_label(time_range or settings.default_time_range)
    if label not in TIME_RANGES:
        raise InvalidQueryError(
            f"unknown timeRange '{time_range}', expected one of {', '.join(TIME_RANGES)}"
        )

    days = TIME_RANGES[label]
    if days is None:
        return DateRange(label=label)

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return DateRange(start=now_ms - days * scoring.MS_PER_DAY, label=label)


@dataclass
class ConversationAggregate:
    conversation_id: str
    user_id: str
    started_at: int
    ended_at: int | None = None
    message_count: int | None = None

    @property
    def completed(self) -> bool:
        return self.ended_at is not None


@dataclass
class JourneyAggregate:
    """One user's pass through a named journey"""
    journey_name: str
    user_id: str
    first_seen: int
    steps: int = 0
    completed: bool = False


@dataclass
class EventWindow:
    """Events of one scan split into their typed readings, oldest first"""
    events: list[Event] = field(default_factory=list)
    votes: list[VoteSignal] = field(default_factory=list)
    turns: list[TurnSignal] = field(default_factory=list)
    boundaries: list[ConversationBoundary] = field(default_factory=list)
    steps: list[JourneyStep] = field(default_factory=list)
    type_counts: Counter = field(default_factory=Counter)
    truncated: bool = False

    @classmethod
    def from_events(cls, events: list[Event], truncated: bool = False) -> "EventWindow":
        window = cls(events=sorted(events, key=lambda e: (e.timestamp, e.event_id)), truncated=truncated)

        for event in window.events:
            window.type_counts[event.event_type] += 1
            signal = read_event(event)
            if isinstance(signal, VoteSignal):
                window.votes.append(signal)
            elif isinstance(signal, TurnSignal):
                window.turns.append(signal)
            elif isinstance(signal, ConversationBoundary):
                window.boundaries.append(signal)
            elif isinstance(signal, JourneyStep):
                window.steps.append(signal)

        return window

    def count(self, event_type: EventType) -> int:
        return self.type_counts.get(event_type.value, 0)


def build_conversations(boundaries: list[ConversationBoundary]) -> dict[str, ConversationAggregate]:
    """Conversations opened by a start event, with their latest end attached"""
    conversations: dict[str, ConversationAggregate] = {}
    ends: dict[str, ConversationBoundary] = {}

    for boundary in boundaries:
        if not boundary.conversation_id:
            continue
        if boundary.started:
            conversations.setdefault(
                boundary.conversation_id,
                ConversationAggregate(boundary.conversation_id, boundary.user_id, boundary.timestamp)
            )
        else:
            ends[boundary.conversation_id] = boundary

    for conversation_id, end in ends.items():
        conversation = conversations.get(conversation_id)
        if conversation is not None:
            conversation.ended_at = end.timestamp
            conversation.message_count = end.message_count

    return conversations


def build_journeys(steps: list[JourneyStep]) -> dict[tuple[str, str], JourneyAggregate]:
    occurrences: dict[tuple[str, str], JourneyAggregate] = {}
    for step in steps:
        if not step.journey_name:
            continue
        key = (step.journey_name, step.user_id)
        occurrence = occurrences.get(key)
        if occurrence is None:
            occurrence = occurrences[key] = JourneyAggregate(step.journey_name, step.user_id, step.timestamp)
        occurrence.steps += 1
        occurrence.completed = occurrence.completed or step.completed
    return occurrences


def _percent(part: int, total: int) -> float | None:
    return round(part / total * 100, 2) if total else None


def _fraction(value: float | None, digits: int = 3) -> float | None:
    return round(value, digits) if value is not None else None


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    # Divide before summing so the total stays finite
    return round(sum(value / len(values) for value in values), 2)


def conversation_stats(window: EventWindow) -> ConversationStats:
    conversations = build_conversations(window.boundaries)
    completed = [c for c in conversations.values() if c.completed]
    message_counts = [c.message_count for c in completed if c.message_count is not None]

    completed_turns = window.count(EventType.TURN_COMPLETED)
    failed_turns = window.count(EventType.TURN_FAILED)

    return ConversationStats(
        total_conversations=len(conversations),
        completed_conversations=len(completed),
        completion_rate=_percent(len(completed), len(conversations)),
        success_rate=_percent(completed_turns, completed_turns + failed_turns),
        average_messages=_mean(message_counts)
    )


def journey_stats(steps: list[JourneyStep], top_n: int = 5) -> JourneyStats:
    occurrences = build_journeys(steps)

    # Insertion order of names follows first appearance since steps are time-ordered
    by_name: dict[str, dict[str, int]] = {}
    for occurrence in occurrences.values():
        journey = by_name.setdefault(occurrence.journey_name, {"count": 0, "steps": 0, "completed": 0})
        journey["count"] += 1
        journey["steps"] += occurrence.steps
        journey["completed"] += int(occurrence.completed)

    first_seen = {name: order for order, name in enumerate(by_name)}
    ranked = sorted(by_name.items(), key=lambda item: (-item[1]["count"], first_seen[item[0]]))

    completed = sum(1 for o in occurrences.values() if o.completed)

    return JourneyStats(
        total_journeys=len(by_name),
        total_occurrences=len(occurrences),
        completed_occurrences=completed,
        completion_rate=_percent(completed, len(occurrences)),
        popular_journeys=[
            PopularJourney(
                name=name,
                count=stats["count"],
                steps=stats["steps"],
                completed=stats["completed"],
                completion_rate=_percent(stats["completed"], stats["count"])
            )
            for name, stats in ranked[:top_n]
        ]
    )


def recent_comments(votes: list[VoteSignal], limit: int) -> list[str]:
    newest_first = sorted(votes, key=lambda v: (v.timestamp, v.event_id), reverse=True)
    return [vote.comment for vote in newest_first if vote.comment][:limit]


class AnalyticsEngine:
    """Computes dashboard and analytics responses from stored events"""

    def __init__(
            self,
            store: EventStore,
            cache: ResultCache | None = None,
            config: Settings = settings,
            clock: Callable[[], int] | None = None
    ):
        self.store = store
        self.cache = cache
        self.config = config
        self.clock = clock or (lambda: int(time.time() * 1000))

    def resolve_date_range(
            self,
            time_range: str | None = None,
            start: int | None = None,
            end: int | None = None
    ) -> DateRange:
        if not (time_range or start is not None or end is not None):
            time_range = self.config.default_time_range
        return resolve_date_range(time_range, start, end, now_ms=self.clock())

    def dashboard(self, date_range: DateRange) -> DashboardData:
        return self._cached("dashboard", date_range, self._compute_dashboard)

    def vote_analytics(self, date_range: DateRange) -> VoteAnalytics:
        return self._cached("votes", date_range, self._compute_votes)

    def turn_analytics(self, date_range: DateRange) -> TurnAnalytics:
        return self._cached("turns", date_range, self._compute_turns)

    def journey_analytics(self, date_range: DateRange) -> JourneyAnalytics:
        return self._cached("journeys", date_range, self._compute_journeys)

    def overview(self, date_range: DateRange) -> OverviewAnalytics:
        return self._cached("overview", date_range, self._compute_overview)

    def basic_stats(self, user_id: str) -> BasicStats:
        """All-time feedback summary for one user"""
        window = self._window(DateRange(label="ALL"), [EventType.VOTE_CAST], user_id=user_id)
        votes = window.votes

        return BasicStats(
            total_votes=len(votes),
            positive_rate=_fraction(scoring.positive_rate(votes)),
            recent_trend=self._trend(votes),
            top_feedback=recent_comments(votes, self.config.recent_comments)
        )

    def prompt_stats(self, prompt_id: str) -> PromptStats:
        """Feedback for one turn, matching current and legacy identifiers"""
        rows = CorrelationService(self.store.db).vote_events_for_turn(prompt_id)
        votes = [read_vote(row) for row in rows]

        return PromptStats(
            prompt_id=prompt_id,
            total_votes=len(votes),
            positive_rate=_fraction(scoring.positive_rate(votes)),
            comments=recent_comments(votes, self.config.recent_comments)
        )

    def _cached(self, kind: str, date_range: DateRange, compute: Callable[[DateRange], object]):
        key = (kind, date_range.cache_key)
        generation = None
        if self.cache is not None:
            generation = self.cache.generation
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("analytics_cache_hit", kind=kind, range=str(date_range.cache_key))
                return cached

        started = time.perf_counter()
        result = compute(date_range)
        logger.info(
            "analytics_computed",
            kind=kind,
            range=str(date_range.cache_key),
            duration_ms=round((time.perf_counter() - started) * 1000, 2)
        )

        # A write committed during compute leaves this snapshot stale
        if self.cache is not None and not self.cache.set(key, result, generation=generation):
            logger.debug("analytics_snapshot_discarded", kind=kind, range=str(date_range.cache_key))
        return result

    def _window(
            self,
            date_range: DateRange,
            event_types: list[EventType] | None = None,
            user_id: str | None = None
    ) -> EventWindow:
        events, truncated = self.store.scan(
            date_range.filters(event_types, user_id=user_id),
            max_rows=self.config.max_scan_rows
        )
        return EventWindow.from_events(events, truncated)

    def _trend(self, votes: list[VoteSignal]) -> str:
        return scoring.trend_direction(
            votes,
            threshold=self.config.trend_threshold,
            min_votes=self.config.trend_min_votes
        )

    def _trust_score(self, votes: list[VoteSignal]) -> float | None:
        score = scoring.weighted_trust_score(
            votes,
            now_ms=self.clock(),
            half_life_days=self.config.trust_half_life_days,
            floor_weight=self.config.trust_floor_weight
        )
        return _fraction(score)

    def _feedback_stats(self, votes: list[VoteSignal]) -> FeedbackStats:
        positive = sum(1 for v in votes if v.positive)
        return FeedbackStats(
            total_feedback=len(votes),
            positive_votes=positive,
            negative_votes=sum(1 for v in votes if v.value == -1),
            positive_rate=_fraction(scoring.positive_rate(votes)),
            recent_trend=self._trend(votes),
            recent_comments=recent_comments(votes, self.config.recent_comments)
        )

    def _quality_signals(self, window: EventWindow) -> QualitySignals:
        completed_turns = window.count(EventType.TURN_COMPLETED)
        response_times = [
            t.response_time for t in window.turns
            if t.event_type == EventType.TURN_COMPLETED and t.response_time is not None
        ]
        return QualitySignals(
            average_response_time=_mean(response_times),
            regeneration_rate=_percent(window.count(EventType.REGENERATION_REQUESTED), completed_turns),
            frustration_rate=_percent(window.count(EventType.FRUSTRATION_DETECTED), completed_turns)
        )

    def _recent_activity(self, window: EventWindow) -> RecentActivity:
        newest = window.events[::-1][:self.config.recent_activity]
        return RecentActivity(
            total_events=len(window.events),
            events=[
                RecentEvent(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    user_id=event.user_id,
                    timestamp=event.timestamp,
                    conversation_id=event.conversation_id,
                    turn_id=event.turn_id
                )
                for event in newest
            ]
        )

    def _compute_dashboard(self, date_range: DateRange) -> DashboardData:
        window = self._window(date_range)

        return DashboardData(
            date_range=date_range.info(),
            conversation_stats=conversation_stats(window),
            journey_stats=journey_stats(window.steps, self.config.top_journeys),
            feedback_stats=self._feedback_stats(window.votes),
            trust=TrustScore(
                score=self._trust_score(window.votes),
                sample_size=len(window.votes),
                half_life_days=self.config.trust_half_life_days,
                floor_weight=self.config.trust_floor_weight
            ),
            time_series=TimeSeries(
                daily=timeseries.vote_buckets(window.votes, "day"),
                weekly=timeseries.vote_buckets(window.votes, "week")
            ),
            quality_signals=self._quality_signals(window),
            recent_activity=self._recent_activity(window),
            generated_at=self.clock(),
            truncated=window.truncated
        )

    def _compute_votes(self, date_range: DateRange) -> VoteAnalytics:
        votes = self._window(date_range, [EventType.VOTE_CAST]).votes
        feedback = self._feedback_stats(votes)

        return VoteAnalytics(
            date_range=date_range.info(),
            overview=VoteOverview(
                total_votes=feedback.total_feedback,
                positive_votes=feedback.positive_votes,
                negative_votes=feedback.negative_votes,
                positive_rate=feedback.positive_rate,
                comments_count=sum(1 for v in votes if v.comment),
                unique_users=len({v.user_id for v in votes}),
                unique_turns=len({v.turn_id for v in votes}),
                trust_score=self._trust_score(votes)
            ),
            trends=VoteTrends(
                daily=timeseries.vote_buckets(votes, "day"),
                hourly=timeseries.hourly_vote_buckets(votes)
            ),
            recent_trend=feedback.recent_trend,
            recent_comments=feedback.recent_comments
        )

    def _compute_turns(self, date_range: DateRange) -> TurnAnalytics:
        window = self._window(date_range, list(TURN_EVENT_TYPES) + [EventType.VOTE_CAST])
        completed = window.count(EventType.TURN_COMPLETED)
        failed = window.count(EventType.TURN_FAILED)
        response_times = [
            t.response_time for t in window.turns
            if t.event_type == EventType.TURN_COMPLETED and t.response_time is not None
        ]

        return TurnAnalytics(
            date_range=date_range.info(),
            overview=TurnOverview(
                total_turns=completed + failed,
                completed_turns=completed,
                failed_turns=failed,
                turns_with_feedback=turns_with_feedback(window.turns, window.votes),
                average_response_time=_mean(response_times),
                unique_users=len({t.user_id for t in window.turns}),
                success_rate=_percent(completed, completed + failed)
            ),
            trends=TurnTrends(daily=timeseries.turn_buckets(window.turns))
        )

    def _compute_journeys(self, date_range: DateRange) -> JourneyAnalytics:
        steps = self._window(date_range, [EventType.JOURNEY_STEP]).steps
        return JourneyAnalytics(
            date_range=date_range.info(),
            overview=journey_stats(steps, self.config.top_journeys)
        )

    def _compute_overview(self, date_range: DateRange) -> OverviewAnalytics:
        window = self._window(date_range)
        ranked = sorted(window.type_counts.items(), key=lambda item: (-item[1], item[0]))

        return OverviewAnalytics(
            date_range=date_range.info(),
            total_events=len(window.events),
            total_users=len({e.user_id for e in window.events}),
            event_types=[EventTypeCount(type=t, count=c) for t, c in ranked]
        )
