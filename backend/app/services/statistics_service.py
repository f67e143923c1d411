"""Persistence side of performance aggregation.

Case and user statistics rows are updated with read-modify-write guarded by
their ``version`` column; conflicts are retried. A session's completion is
folded in exactly once: the statistics update and the session's
``aggregated_at`` marker commit together.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.cache.helpers import performance_key
from app.cache.redis import get_json, set_json
from app.common.clock import utcnow
from app.core.config import settings
from app.core.logging import get_logger
from app.models.case import ClinicalCase
from app.models.simulation import SimulationSession, SimulationStatus
from app.models.statistics import CaseStatistics, UserStatistics
from app.services.aggregation import (
    CaseAggregate,
    CompletionRecord,
    UserAggregate,
    build_performance_report,
    case_aggregate_from_history,
    filter_window,
    fold_case_completion,
    fold_user_completion,
    normalize_timeframe,
    timeframe_start,
    user_aggregate_from_history,
)

logger = get_logger(__name__)

# Write conflicts that mean "someone else updated the row first; re-read and retry"
_RETRYABLE = (StaleDataError, IntegrityError)


def _case_stats_row(db: Session, case_id: UUID) -> CaseStatistics:
    row = db.get(CaseStatistics, case_id, populate_existing=True)
    if row is None:
        row = CaseStatistics(
            case_id=case_id,
            attempt_count=0,
            completion_count=0,
            average_score=0.0,
            average_time_spent=0.0,
        )
        db.add(row)
    return row


def _user_stats_row(db: Session, user_id: UUID) -> UserStatistics:
    row = db.get(UserStatistics, user_id, populate_existing=True)
    if row is None:
        row = UserStatistics(
            user_id=user_id,
            cases_completed=0,
            average_score=0.0,
            total_time_spent=0,
        )
        db.add(row)
    return row


def completion_record(session: SimulationSession, case: ClinicalCase) -> CompletionRecord:
    return CompletionRecord(
        session_id=session.id,
        user_id=session.user_id,
        case_id=session.case_id,
        specialty=case.specialty,
        difficulty=case.difficulty.value,
        percentage_score=session.percentage_score,
        time_spent_seconds=session.time_spent_seconds,
        completed_at=session.ended_at,
    )


def load_completion_records(
    db: Session,
    *,
    user_id: UUID | None = None,
    case_id: UUID | None = None,
    aggregated_only: bool = False,
) -> list[CompletionRecord]:
    """Completed sessions joined with their case metadata."""
    stmt = (
        select(SimulationSession, ClinicalCase)
        .join(ClinicalCase, ClinicalCase.id == SimulationSession.case_id)
        .where(SimulationSession.status == SimulationStatus.COMPLETED)
    )
    if user_id is not None:
        stmt = stmt.where(SimulationSession.user_id == user_id)
    if case_id is not None:
        stmt = stmt.where(SimulationSession.case_id == case_id)
    if aggregated_only:
        stmt = stmt.where(SimulationSession.aggregated_at.is_not(None))
    stmt = stmt.order_by(SimulationSession.ended_at)

    return [completion_record(session, case) for session, case in db.execute(stmt).all()]


# ============================================================================
# Incremental updates
# ============================================================================


def record_case_attempt(db: Session, case_id: UUID) -> bool:
    """Count a session start against the case. Best-effort: never raises for conflicts."""
    for attempt in range(1, settings.AGGREGATE_MAX_RETRIES + 1):
        try:
            row = _case_stats_row(db, case_id)
            row.attempt_count += 1
            db.commit()
            return True
        except _RETRYABLE:
            db.rollback()
            logger.debug(f"Case attempt counter conflict for {case_id} (attempt {attempt})")
    logger.warning(
        "case_attempt_count_skipped",
        extra={"event": "case_attempt_count_skipped", "case_id": str(case_id)},
    )
    return False


def apply_completion(db: Session, session_id: UUID) -> bool:
    """
    Fold one completed session into case and user statistics.

    Idempotent: a session whose ``aggregated_at`` is already set is skipped.

    Args:
        db: Database session
        session_id: Completed simulation session

    Returns:
        True if statistics were updated by this call, False if skipped or
        retries were exhausted
    """
    for attempt in range(1, settings.AGGREGATE_MAX_RETRIES + 1):
        try:
            session = db.get(SimulationSession, session_id, populate_existing=True)
            if session is None or session.status != SimulationStatus.COMPLETED:
                return False
            if session.aggregated_at is not None:
                return False

            case_row = _case_stats_row(db, session.case_id)
            case_agg = fold_case_completion(
                CaseAggregate(
                    completion_count=case_row.completion_count,
                    average_score=case_row.average_score,
                    average_time_spent=case_row.average_time_spent,
                ),
                session.percentage_score,
                session.time_spent_seconds,
            )
            case_row.completion_count = case_agg.completion_count
            case_row.average_score = case_agg.average_score
            case_row.average_time_spent = case_agg.average_time_spent

            user_row = _user_stats_row(db, session.user_id)
            user_agg = fold_user_completion(
                UserAggregate(
                    cases_completed=user_row.cases_completed,
                    average_score=user_row.average_score,
                    total_time_spent=user_row.total_time_spent,
                    last_completed_at=user_row.last_completed_at,
                ),
                session.percentage_score,
                session.time_spent_seconds,
                session.ended_at,
            )
            user_row.cases_completed = user_agg.cases_completed
            user_row.average_score = user_agg.average_score
            user_row.total_time_spent = user_agg.total_time_spent
            user_row.last_completed_at = user_agg.last_completed_at

            session.aggregated_at = utcnow()
            db.commit()

            logger.info(
                "statistics_updated",
                extra={
                    "event": "statistics_updated",
                    "session_id": str(session_id),
                    "case_id": str(session.case_id),
                    "completion_count": case_agg.completion_count,
                },
            )
            return True
        except _RETRYABLE:
            db.rollback()
            logger.debug(f"Statistics update conflict for session {session_id} (attempt {attempt})")

    logger.warning(
        "statistics_update_exhausted",
        extra={"event": "statistics_update_exhausted", "session_id": str(session_id)},
    )
    return False


def backfill_pending_aggregates(db: Session, limit: int = 500) -> int:
    """Fold completed sessions that were never aggregated. Returns how many were applied."""
    stmt = (
        select(SimulationSession.id)
        .where(
            SimulationSession.status == SimulationStatus.COMPLETED,
            SimulationSession.aggregated_at.is_(None),
        )
        .order_by(SimulationSession.ended_at)
        .limit(limit)
    )
    pending = list(db.execute(stmt).scalars().all())

    applied = 0
    for session_id in pending:
        if apply_completion(db, session_id):
            applied += 1

    logger.info(
        "aggregate_backfill_done",
        extra={"event": "aggregate_backfill_done", "pending": len(pending), "applied": applied},
    )
    return applied


# ============================================================================
# Full recomputation
# ============================================================================


def rebuild_case_statistics(db: Session, case_id: UUID) -> CaseAggregate:
    """Recompute a case's statistics from every aggregated completion."""
    records = load_completion_records(db, case_id=case_id, aggregated_only=True)
    aggregate = case_aggregate_from_history(records)
    attempts = db.execute(
        select(func.count()).select_from(SimulationSession).where(SimulationSession.case_id == case_id)
    ).scalar_one()

    row = _case_stats_row(db, case_id)
    row.attempt_count = attempts
    row.completion_count = aggregate.completion_count
    row.average_score = aggregate.average_score
    row.average_time_spent = aggregate.average_time_spent
    db.commit()
    return aggregate


def rebuild_user_statistics(db: Session, user_id: UUID) -> UserAggregate:
    """Recompute a user's statistics from every aggregated completion."""
    records = load_completion_records(db, user_id=user_id, aggregated_only=True)
    aggregate = user_aggregate_from_history(records)

    row = _user_stats_row(db, user_id)
    row.cases_completed = aggregate.cases_completed
    row.average_score = aggregate.average_score
    row.total_time_spent = aggregate.total_time_spent
    row.last_completed_at = aggregate.last_completed_at
    db.commit()
    return aggregate


# ============================================================================
# Reads
# ============================================================================


def get_case_statistics(db: Session, case_id: UUID) -> dict[str, Any]:
    row = db.get(CaseStatistics, case_id)
    if row is None:
        return {
            "case_id": case_id,
            "attempt_count": 0,
            "completion_count": 0,
            "average_score": 0.0,
            "average_time_spent": 0.0,
        }
    return {
        "case_id": case_id,
        "attempt_count": row.attempt_count,
        "completion_count": row.completion_count,
        "average_score": row.average_score,
        "average_time_spent": row.average_time_spent,
    }


def get_user_performance(
    db: Session,
    user_id: UUID,
    timeframe: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Time-windowed performance report for a user.

    Cached per (user, timeframe) until the TTL expires; a miss always
    recomputes the whole report.
    """
    timeframe = normalize_timeframe(timeframe or settings.DEFAULT_PERFORMANCE_TIMEFRAME)
    cache_key = performance_key(user_id, timeframe)

    cached = get_json(cache_key)
    if cached is not None:
        return cached

    end = now or utcnow()
    start = timeframe_start(timeframe, end)
    records = filter_window(load_completion_records(db, user_id=user_id), start, end)

    report = {
        "user_id": str(user_id),
        "timeframe": timeframe,
        **build_performance_report(records),
    }
    set_json(cache_key, report, settings.PERFORMANCE_CACHE_TTL_SECONDS)
    return report
