"""Pure aggregation functions over completed simulation sessions.

Everything here is side-effect free. Running statistics are maintained with
``online_mean``; the ``*_from_history`` functions recompute the same values
from the full session history and must agree with the incremental path.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

TIMEFRAME_DAYS: dict[str, int | None] = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "all": None,
}
FALLBACK_TIMEFRAME = "30d"


@dataclass(frozen=True)
class CompletionRecord:
    """The slice of a completed session that aggregation needs."""

    session_id: UUID
    user_id: UUID
    case_id: UUID
    specialty: str
    difficulty: str
    percentage_score: int
    time_spent_seconds: int
    completed_at: datetime


@dataclass(frozen=True)
class CaseAggregate:
    completion_count: int = 0
    average_score: float = 0.0
    average_time_spent: float = 0.0


@dataclass(frozen=True)
class UserAggregate:
    cases_completed: int = 0
    average_score: float = 0.0
    total_time_spent: int = 0
    last_completed_at: datetime | None = None


def online_mean(mean: float, count: int, sample: float) -> float:
    """
    Fold one sample into a running mean.

    ``count`` is the number of samples already in ``mean`` (the
    pre-increment count); passing the post-increment count skews the result.
    """
    return (mean * count + sample) / (count + 1)


def fold_case_completion(aggregate: CaseAggregate, score: float, time_spent: float) -> CaseAggregate:
    count = aggregate.completion_count
    return CaseAggregate(
        completion_count=count + 1,
        average_score=online_mean(aggregate.average_score, count, score),
        average_time_spent=online_mean(aggregate.average_time_spent, count, time_spent),
    )


def fold_user_completion(
    aggregate: UserAggregate,
    score: float,
    time_spent: int,
    completed_at: datetime,
) -> UserAggregate:
    count = aggregate.cases_completed
    last = aggregate.last_completed_at
    return UserAggregate(
        cases_completed=count + 1,
        average_score=online_mean(aggregate.average_score, count, score),
        total_time_spent=aggregate.total_time_spent + time_spent,
        last_completed_at=completed_at if last is None or completed_at > last else last,
    )


def case_aggregate_from_history(records: Iterable[CompletionRecord]) -> CaseAggregate:
    records = list(records)
    if not records:
        return CaseAggregate()
    n = len(records)
    return CaseAggregate(
        completion_count=n,
        average_score=sum(r.percentage_score for r in records) / n,
        average_time_spent=sum(r.time_spent_seconds for r in records) / n,
    )


def user_aggregate_from_history(records: Iterable[CompletionRecord]) -> UserAggregate:
    records = list(records)
    if not records:
        return UserAggregate()
    n = len(records)
    return UserAggregate(
        cases_completed=n,
        average_score=sum(r.percentage_score for r in records) / n,
        total_time_spent=sum(r.time_spent_seconds for r in records),
        last_completed_at=max(r.completed_at for r in records),
    )


# ============================================================================
# Time-windowed user performance
# ============================================================================


def normalize_timeframe(timeframe: str | None) -> str:
    """Known timeframes pass through; anything else falls back to 30 days."""
    if timeframe in TIMEFRAME_DAYS:
        return timeframe
    return FALLBACK_TIMEFRAME


def timeframe_start(timeframe: str, now: datetime) -> datetime | None:
    days = TIMEFRAME_DAYS[normalize_timeframe(timeframe)]
    if days is None:
        return None
    return now - timedelta(days=days)


def filter_window(
    records: Iterable[CompletionRecord],
    start: datetime | None,
    end: datetime,
) -> list[CompletionRecord]:
    return [
        r for r in records
        if r.completed_at <= end and (start is None or r.completed_at >= start)
    ]


def week_start(moment: datetime) -> date:
    """Monday of the week ``moment`` falls in."""
    day = moment.date()
    return day - timedelta(days=day.weekday())


def _summarize(records: list[CompletionRecord]) -> dict[str, Any]:
    n = len(records)
    return {
        "cases_completed": n,
        "average_score": round(sum(r.percentage_score for r in records) / n, 2),
        "average_time": round(sum(r.time_spent_seconds for r in records) / n, 2),
    }


def partition_stats(
    records: Iterable[CompletionRecord],
    key: Callable[[CompletionRecord], str],
) -> dict[str, dict[str, Any]]:
    """Group records by ``key`` and summarize each group."""
    groups: dict[str, list[CompletionRecord]] = defaultdict(list)
    for record in records:
        groups[key(record)].append(record)
    return {name: _summarize(group) for name, group in sorted(groups.items())}


def weekly_trend(records: Iterable[CompletionRecord]) -> list[dict[str, Any]]:
    """Per-week summaries keyed by the Monday of the completion week, oldest first."""
    buckets: dict[date, list[CompletionRecord]] = defaultdict(list)
    for record in records:
        buckets[week_start(record.completed_at)].append(record)
    return [
        {"week": week.isoformat(), **_summarize(buckets[week])}
        for week in sorted(buckets)
    ]


def build_performance_report(records: Iterable[CompletionRecord]) -> dict[str, Any]:
    """User performance report over an already-windowed set of completions."""
    records = sorted(records, key=lambda r: r.completed_at)
    if not records:
        return {
            "cases_completed": 0,
            "average_score": 0.0,
            "total_time_spent": 0,
            "average_time_per_case": 0.0,
            "specialty_breakdown": {},
            "difficulty_breakdown": {},
            "weekly_trend": [],
        }

    n = len(records)
    total_time = sum(r.time_spent_seconds for r in records)
    return {
        "cases_completed": n,
        "average_score": round(sum(r.percentage_score for r in records) / n, 2),
        "total_time_spent": total_time,
        "average_time_per_case": round(total_time / n, 2),
        "specialty_breakdown": partition_stats(records, lambda r: r.specialty),
        "difficulty_breakdown": partition_stats(records, lambda r: r.difficulty),
        "weekly_trend": weekly_trend(records),
    }
