from typing import Literal

from pydantic import Field

from trust_analytics.schemas.base import CamelModel

TrendDirection = Literal["improving", "declining", "stable"]


class DateRangeInfo(CamelModel):
    """Resolved query window, half-open [start, end) in epoch milliseconds"""
    start: int | None = None
    end: int | None = None
    label: str | None = None


class ConversationStats(CamelModel):
    total_conversations: int
    completed_conversations: int
    completion_rate: float | None = None
    success_rate: float | None = None
    average_messages: float | None = None


class PopularJourney(CamelModel):
    name: str
    count: int
    steps: int
    completed: int
    completion_rate: float


class JourneyStats(CamelModel):
    total_journeys: int
    total_occurrences: int
    completed_occurrences: int
    completion_rate: float | None = None
    popular_journeys: list[PopularJourney] = Field(default_factory=list)


class FeedbackStats(CamelModel):
    total_feedback: int
    positive_votes: int
    negative_votes: int
    positive_rate: float | None = None
    recent_trend: TrendDirection = "stable"
    recent_comments: list[str] = Field(default_factory=list)


class TrustScore(CamelModel):
    """Recency-weighted trust score, recomputed on every query"""
    score: float | None = None
    sample_size: int
    half_life_days: float
    floor_weight: float


class VoteBucket(CamelModel):
    """Votes in one calendar day, or one ISO week keyed by its Monday"""
    date: str
    total_votes: int
    positive_votes: int
    negative_votes: int
    positive_rate: float | None = None


class HourlyVoteBucket(CamelModel):
    hour: int = Field(..., ge=0, le=23)
    total_votes: int
    positive_votes: int
    negative_votes: int
    positive_rate: float | None = None


class TimeSeries(CamelModel):
    daily: list[VoteBucket] = Field(default_factory=list)
    weekly: list[VoteBucket] = Field(default_factory=list)


class QualitySignals(CamelModel):
    average_response_time: float | None = None
    regeneration_rate: float | None = None
    frustration_rate: float | None = None


class RecentEvent(CamelModel):
    event_id: str
    event_type: str
    user_id: str
    timestamp: int
    conversation_id: str | None = None
    turn_id: str | None = None


class RecentActivity(CamelModel):
    events: list[RecentEvent] = Field(default_factory=list)
    total_events: int


class DashboardData(CamelModel):
    """Full dashboard snapshot for one date range"""
    date_range: DateRangeInfo
    conversation_stats: ConversationStats
    journey_stats: JourneyStats
    feedback_stats: FeedbackStats
    trust: TrustScore
    time_series: TimeSeries
    quality_signals: QualitySignals
    recent_activity: RecentActivity
    generated_at: int
    truncated: bool = False


class VoteOverview(CamelModel):
    total_votes: int
    positive_votes: int
    negative_votes: int
    positive_rate: float | None = None
    comments_count: int
    unique_users: int
    unique_turns: int
    trust_score: float | None = None


class VoteTrends(CamelModel):
    daily: list[VoteBucket] = Field(default_factory=list)
    hourly: list[HourlyVoteBucket] = Field(default_factory=list)


class VoteAnalytics(CamelModel):
    date_range: DateRangeInfo
    overview: VoteOverview
    trends: VoteTrends
    recent_trend: TrendDirection = "stable"
    recent_comments: list[str] = Field(default_factory=list)


class TurnOverview(CamelModel):
    total_turns: int
    completed_turns: int
    failed_turns: int
    turns_with_feedback: int
    average_response_time: float | None = None
    unique_users: int
    success_rate: float | None = None


class TurnBucket(CamelModel):
    date: str
    total_turns: int
    completed_turns: int
    failed_turns: int
    success_rate: float | None = None


class TurnTrends(CamelModel):
    daily: list[TurnBucket] = Field(default_factory=list)


class TurnAnalytics(CamelModel):
    date_range: DateRangeInfo
    overview: TurnOverview
    trends: TurnTrends


class JourneyAnalytics(CamelModel):
    date_range: DateRangeInfo
    overview: JourneyStats


class EventTypeCount(CamelModel):
    type: str
    count: int


class OverviewAnalytics(CamelModel):
    date_range: DateRangeInfo
    total_events: int
    total_users: int
    event_types: list[EventTypeCount] = Field(default_factory=list)


class TurnVoteCorrelation(CamelModel):
    """A turn and the vote that rates it; either side may be missing"""
    turn_id: str
    turn_event_id: str | None = None
    turn_timestamp: int | None = None
    vote_event_id: str | None = None
    vote_value: int | None = None
    vote_comment: str | None = None
    vote_timestamp: int | None = None
    user_id: str | None = None
    journey_id: str | None = None
    conversation_id: str | None = None
    turn_sequence: int | None = None


class BasicStats(CamelModel):
    """Per-user feedback summary"""
    total_votes: int
    positive_rate: float | None = None
    recent_trend: TrendDirection = "stable"
    top_feedback: list[str] = Field(default_factory=list)


class PromptStats(CamelModel):
    """Feedback for one prompt / turn identifier"""
    prompt_id: str
    total_votes: int
    positive_rate: float | None = None
    comments: list[str] = Field(default_factory=list)
