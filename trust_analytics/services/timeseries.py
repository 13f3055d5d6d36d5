"""Calendar bucketing of votes and turns using DuckDB over pandas frames.

Buckets use the event's own timestamp in UTC, never ingestion time.
"""
from collections.abc import Sequence

import pandas as pd
import structlog

from trust_analytics.core.database import get_duckdb_connection
from trust_analytics.models.event import EventType, TURN_OUTCOME_TYPES
from trust_analytics.schemas.analytics import HourlyVoteBucket, TurnBucket, VoteBucket
from trust_analytics.services.correlation import TurnSignal, VoteSignal

logger = structlog.get_logger()

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


def _date_label(column: str) -> str:
    """SQL turning an epoch day number into an ISO date string"""
    return f"strftime(DATE '1970-01-01' + CAST(\"{column}\" AS INTEGER), '%Y-%m-%d')"


# day and week hold epoch day numbers; only hour is emitted as-is
_BUCKET_LABELS = {
    "day": _date_label("day"),
    "week": _date_label("week"),
    "hour": '"hour"',
}


def _calendar_columns(df: pd.DataFrame) -> pd.DataFrame:
    df["day"] = df["timestamp"] // MS_PER_DAY
    # ISO weeks, keyed by their Monday; 1970-01-01 was a Thursday
    df["week"] = df["day"] - (df["day"] + 3) % 7
    df["hour"] = (df["timestamp"] // MS_PER_HOUR) % 24
    return df


def _rollup(df: pd.DataFrame, bucket: str, measures: Sequence[str]) -> list[tuple]:
    if bucket not in _BUCKET_LABELS:
        raise ValueError(f"unknown bucket column: {bucket}")

    sums = ", ".join(f"SUM({measure}) AS {measure}" for measure in measures)
    query = f"""
        SELECT {_BUCKET_LABELS[bucket]} AS bucket, COUNT(*) AS total, {sums}
        FROM frame
        GROUP BY "{bucket}"
        ORDER BY "{bucket}"
    """

    conn = get_duckdb_connection()
    try:
        conn.register("frame", df)
        return conn.execute(query).fetchall()
    finally:
        conn.close()


def _rate(part: int, total: int, digits: int = 3) -> float | None:
    return round(part / total, digits) if total else None


def _vote_frame(votes: Sequence[VoteSignal]) -> pd.DataFrame:
    df = pd.DataFrame({
        "timestamp": pd.Series([vote.timestamp for vote in votes], dtype="int64"),
        "positive": pd.Series([1 if vote.positive else 0 for vote in votes], dtype="int64"),
        "negative": pd.Series([1 if vote.value == -1 else 0 for vote in votes], dtype="int64"),
    })
    return _calendar_columns(df)


def vote_buckets(votes: Sequence[VoteSignal], period: str = "day") -> list[VoteBucket]:
    """Daily (``day``) or weekly (``week``) vote counts with unweighted positive rate"""
    if not votes:
        return []

    rows = _rollup(_vote_frame(votes), period, ("positive", "negative"))
    logger.debug("vote_buckets_computed", period=period, buckets=len(rows))

    return [
        VoteBucket(
            date=bucket,
            total_votes=int(total),
            positive_votes=int(positive),
            negative_votes=int(negative),
            positive_rate=_rate(int(positive), int(total))
        )
        for bucket, total, positive, negative in rows
    ]


def hourly_vote_buckets(votes: Sequence[VoteSignal]) -> list[HourlyVoteBucket]:
    """Votes grouped by UTC hour of day, only hours that saw votes"""
    if not votes:
        return []

    rows = _rollup(_vote_frame(votes), "hour", ("positive", "negative"))
    return [
        HourlyVoteBucket(
            hour=int(hour),
            total_votes=int(total),
            positive_votes=int(positive),
            negative_votes=int(negative),
            positive_rate=_rate(int(positive), int(total))
        )
        for hour, total, positive, negative in rows
    ]


def turn_buckets(turns: Sequence[TurnSignal]) -> list[TurnBucket]:
    """Daily turn outcomes; only completed and failed turns are counted"""
    outcomes = [t for t in turns if t.event_type in TURN_OUTCOME_TYPES]
    if not outcomes:
        return []

    df = _calendar_columns(pd.DataFrame({
        "timestamp": pd.Series([t.timestamp for t in outcomes], dtype="int64"),
        "completed": pd.Series(
            [1 if t.event_type == EventType.TURN_COMPLETED else 0 for t in outcomes], dtype="int64"
        ),
        "failed": pd.Series([1 if t.event_type == EventType.TURN_FAILED else 0 for t in outcomes], dtype="int64"),
    }))

    rows = _rollup(df, "day", ("completed", "failed"))
    return [
        TurnBucket(
            date=bucket,
            total_turns=int(total),
            completed_turns=int(completed),
            failed_turns=int(failed),
            success_rate=_rate(int(completed) * 100, int(total), 2)
        )
        for bucket, total, completed, failed in rows
    ]
