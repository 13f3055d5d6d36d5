"""Vote scoring: recency-weighted trust score and trend classification"""
from collections.abc import Sequence
from typing import Literal

from trust_analytics.services.correlation import VoteSignal

MS_PER_DAY = 24 * 60 * 60 * 1000

Trend = Literal["improving", "declining", "stable"]


def recency_weight(age_ms: float, half_life_ms: float, floor_weight: float) -> float:
    """Exponential decay weight that never drops below ``floor_weight``.

    ``floor + (1 - floor) * 0.5 ** (age / half_life)`` is 1.0 at age zero,
    halves its decaying part every half-life and is strictly decreasing, so
    an older vote always weighs less than a newer one. Future-dated events
    are treated as age zero.
    """
    if half_life_ms <= 0:
        raise ValueError("half_life_ms must be positive")
    if not 0 < floor_weight < 1:
        raise ValueError("floor_weight must be in (0, 1)")

    age = max(age_ms, 0)
    return floor_weight + (1 - floor_weight) * 0.5 ** (age / half_life_ms)


def weighted_trust_score(
        votes: Sequence[VoteSignal],
        now_ms: int,
        half_life_days: float = 7.0,
        floor_weight: float = 0.05
) -> float | None:
    """Weight-normalized mean of vote outcomes, or None without votes"""
    if not votes:
        return None

    half_life_ms = half_life_days * MS_PER_DAY
    weighted_sum = 0.0
    total_weight = 0.0

    for vote in votes:
        weight = recency_weight(now_ms - vote.timestamp, half_life_ms, floor_weight)
        weighted_sum += vote.outcome * weight
        total_weight += weight

    return weighted_sum / total_weight


def positive_rate(votes: Sequence[VoteSignal]) -> float | None:
    if not votes:
        return None
    return sum(1 for vote in votes if vote.positive) / len(votes)


def trend_direction(
        votes: Sequence[VoteSignal],
        threshold: float = 0.1,
        min_votes: int = 10
) -> Trend:
    """Compare the positive rate of the later half of votes with the earlier half.

    Fewer than ``min_votes`` votes is always ``stable``. With an odd count the
    later half holds the extra vote.
    """
    if len(votes) < max(min_votes, 2):
        return "stable"

    ordered = sorted(votes, key=lambda vote: (vote.timestamp, vote.event_id))
    midpoint = len(ordered) // 2
    difference = positive_rate(ordered[midpoint:]) - positive_rate(ordered[:midpoint])

    if difference > threshold:
        return "improving"
    if difference < -threshold:
        return "declining"
    return "stable"
