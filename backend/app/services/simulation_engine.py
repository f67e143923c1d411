"""Simulation session engine: start, step submission, lifecycle, feedback.

Every mutation runs under the per-session Redis lock (fail open) and commits
through the session's ``version`` column, so two writers can never both
succeed against the same version. The Redis snapshot is written after the
durable commit and is never consulted to decide an outcome.
"""

import uuid
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.common.clock import utcnow
from app.core.app_exceptions import (
    CaseUnavailable,
    ConcurrentModification,
    InvalidStateTransition,
    SessionNotFound,
    SessionTerminatedError,
    UnknownOption,
    UnknownStep,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_lock import redis_lock, session_lock_key
from app.models.simulation import SimulationSession, SimulationStatus
from app.schemas.case_graph import CaseBrief, CaseGraph, StepView
from app.schemas.simulation import (
    CompletionSummary,
    FeedbackOut,
    FeedbackSubmit,
    ProgressCounters,
    SessionOut,
    SessionStartResponse,
    SessionStateOut,
    SessionStatusChange,
    StepOutcome,
    StepSubmissionResult,
)
from app.services import session_cache
from app.services.case_catalog import get_case_graph, get_published_case
from app.services.completion_events import stage_completion_event
from app.services.scoring import (
    accuracy,
    percentage_score,
    performance_band,
    recommendations,
    round_half_up,
)
from app.services.statistics_service import apply_completion, record_case_attempt
from app.services.step_resolver import resolve_next_step

logger = get_logger(__name__)

# action -> (statuses it may start from, resulting status)
_TRANSITIONS: dict[str, tuple[frozenset[SimulationStatus], SimulationStatus]] = {
    "pause": (frozenset({SimulationStatus.STARTED}), SimulationStatus.PAUSED),
    "resume": (frozenset({SimulationStatus.PAUSED}), SimulationStatus.STARTED),
    "abandon": (
        frozenset({SimulationStatus.STARTED, SimulationStatus.PAUSED}),
        SimulationStatus.ABANDONED,
    ),
}


# ============================================================================
# Helpers
# ============================================================================


def _load_session(db: Session, session_id: UUID, user_id: UUID | None) -> SimulationSession:
    """Fresh durable read. A session owned by someone else is reported as missing."""
    session = db.get(SimulationSession, session_id, populate_existing=True)
    if session is None or (user_id is not None and session.user_id != user_id):
        raise SessionNotFound("Session not found", details={"session_id": str(session_id)})
    return session


def _graph_for(db: Session, session: SimulationSession) -> CaseGraph:
    graph = get_case_graph(db, session.case_id)
    if graph is None:
        raise CaseUnavailable(
            "Case not found or not available",
            details={"case_id": str(session.case_id)},
        )
    return graph


def _commit(db: Session, session_id: UUID) -> None:
    """Commit guarded by the version column; a lost race becomes ConcurrentModification."""
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        logger.info(
            "simulation_write_conflict",
            extra={"event": "simulation_write_conflict", "session_id": str(session_id)},
        )
        raise ConcurrentModification(
            "Session was modified concurrently; retry the request",
            details={"session_id": str(session_id)},
        ) from e


def _progress(session: SimulationSession) -> ProgressCounters:
    total = session.total_steps
    return ProgressCounters(
        steps_completed=session.steps_completed,
        total_steps=total,
        current_score=session.score,
        max_score=session.max_possible_score,
        time_spent_seconds=session.time_spent_seconds,
        percentage_complete=round_half_up(100 * session.steps_completed / total) if total else 0,
    )


def _next_step_view(graph: CaseGraph, session: SimulationSession) -> StepView | None:
    if session.status.is_terminal:
        return None
    step = resolve_next_step(graph.steps, session.completed_step_ids)
    return StepView.from_step(step) if step is not None else None


def _completion_summary(session: SimulationSession, graph: CaseGraph) -> CompletionSummary:
    performance = list(session.step_performance or [])
    pct = session.percentage_score
    return CompletionSummary(
        session_id=session.id,
        case_title=graph.title,
        final_score=session.score,
        max_score=session.max_possible_score,
        percentage_score=pct,
        time_spent_seconds=session.time_spent_seconds,
        steps_completed=session.steps_completed,
        total_steps=session.total_steps,
        accuracy=accuracy(performance),
        performance=performance_band(pct),
        step_details=[StepOutcome.model_validate(entry) for entry in performance],
        recommendations=recommendations(
            pct,
            session.time_spent_seconds,
            graph.expected_duration_seconds,
            performance,
            graph.specialty,
        ),
    )


def _refresh_cache(session: SimulationSession) -> None:
    if session.status.is_terminal:
        session_cache.evict(session.id)
    else:
        session_cache.write_entry(session)


def _fold_statistics(db: Session, session_id: UUID) -> None:
    """Aggregate a completion. Failures are logged; the backfill job retries them."""
    try:
        apply_completion(db, session_id)
    except Exception as e:
        db.rollback()
        logger.error(
            "statistics_update_failed",
            extra={"event": "statistics_update_failed", "session_id": str(session_id), "error": str(e)},
        )


# ============================================================================
# Operations
# ============================================================================


async def start_session(db: Session, user_id: UUID, case_id: UUID) -> SessionStartResponse:
    """
    Start a new simulation session for a published case.

    Args:
        db: Database session
        user_id: Learner starting the case
        case_id: Case to simulate

    Returns:
        Case brief, first eligible step and zeroed progress

    Raises:
        CaseUnavailable: If the case is missing or not published (nothing is written)
    """
    graph = get_published_case(db, case_id)

    session = SimulationSession(
        id=uuid.uuid4(),
        user_id=user_id,
        case_id=case_id,
        status=SimulationStatus.STARTED,
        score=0,
        max_possible_score=graph.max_score,
        percentage_score=0,
        steps_completed=0,
        total_steps=len(graph.steps),
        time_spent_seconds=0,
        step_performance=[],
        pause_history=[],
        started_at=utcnow(),
    )
    db.add(session)
    db.commit()

    session_cache.write_entry(session)

    try:
        record_case_attempt(db, case_id)
    except Exception as e:
        db.rollback()
        logger.warning(
            "case_attempt_count_failed",
            extra={"event": "case_attempt_count_failed", "case_id": str(case_id), "error": str(e)},
        )

    logger.info(
        "simulation_session_started",
        extra={
            "event": "simulation_session_started",
            "session_id": str(session.id),
            "user_id": str(user_id),
            "case_id": str(case_id),
        },
    )

    first_step = resolve_next_step(graph.steps, ())
    return SessionStartResponse(
        session_id=session.id,
        status=session.status,
        started_at=session.started_at,
        case=CaseBrief.from_graph(graph),
        next_step=StepView.from_step(first_step) if first_step is not None else None,
        progress=_progress(session),
    )


def _apply_submission(
    db: Session,
    session_id: UUID,
    step_id: str,
    option_id: str,
    time_spent_seconds: int,
    user_id: UUID | None,
) -> tuple[SimulationSession, CaseGraph, dict[str, Any], bool]:
    """Validate and record one answer. Returns (session, graph, outcome, replayed)."""
    session = _load_session(db, session_id, user_id)
    if session.status.is_terminal:
        raise SessionTerminatedError(
            f"Session is already {session.status.value}",
            details={"session_id": str(session_id), "status": session.status.value},
        )

    graph = _graph_for(db, session)
    step = graph.get_step(step_id)
    if step is None:
        raise UnknownStep(
            f"Step {step_id!r} is not part of this case",
            details={"step_id": step_id, "case_id": str(graph.case_id)},
        )
    option = step.get_option(option_id)
    if option is None:
        raise UnknownOption(
            f"Option {option_id!r} is not valid for step {step_id!r}",
            details={"step_id": step_id, "option_id": option_id},
        )

    recorded = session.recorded_outcome(step_id)
    if recorded is not None:
        return session, graph, recorded, True

    if session.status == SimulationStatus.PAUSED:
        raise InvalidStateTransition(
            "Session is paused; resume it before submitting steps",
            details={"session_id": str(session_id), "status": session.status.value},
        )

    points = option.points if option.is_correct else 0
    elapsed = max(0, int(time_spent_seconds))
    outcome = {
        "step_id": step_id,
        "selected_option_id": option_id,
        "is_correct": option.is_correct,
        "points_awarded": points,
        "time_spent_seconds": elapsed,
        "answered_at": utcnow().isoformat(),
    }

    session.step_performance = [*(session.step_performance or []), outcome]
    session.score += points
    session.steps_completed += 1
    session.time_spent_seconds += elapsed

    if resolve_next_step(graph.steps, session.completed_step_ids) is None:
        session.status = SimulationStatus.COMPLETED
        session.ended_at = utcnow()
        session.percentage_score = percentage_score(session.score, session.max_possible_score)
        stage_completion_event(db, session)

    _commit(db, session_id)
    return session, graph, outcome, False


async def submit_step(
    db: Session,
    session_id: UUID,
    step_id: str,
    option_id: str,
    time_spent_seconds: int = 0,
    user_id: UUID | None = None,
) -> StepSubmissionResult:
    """
    Submit the learner's answer for one step.

    Resubmitting an already-answered step returns the recorded outcome with
    ``replayed=True`` and changes nothing. Answering the last eligible step
    completes the session and returns the completion summary.

    Raises:
        SessionNotFound: Unknown session, or owned by another user
        SessionTerminatedError: Session is completed or abandoned
        UnknownStep / UnknownOption: Identifiers not in the case graph
        InvalidStateTransition: Session is paused
        ConcurrentModification: Another writer holds the lock or won the race
    """
    cached = session_cache.read_entry(session_id)

    with redis_lock(session_lock_key(session_id), settings.SESSION_LOCK_TTL_SECONDS) as acquired:
        if not acquired:
            raise ConcurrentModification(
                "Another submission for this session is in progress",
                details={"session_id": str(session_id)},
            )
        session, graph, outcome, replayed = _apply_submission(
            db, session_id, step_id, option_id, time_spent_seconds, user_id
        )

    if cached is not None and not set(cached.completed_step_ids) <= set(session.completed_step_ids):
        logger.warning(
            "session_cache_stale",
            extra={"event": "session_cache_stale", "session_id": str(session_id)},
        )

    if replayed:
        logger.info(
            "simulation_step_replayed",
            extra={"event": "simulation_step_replayed", "session_id": str(session_id), "step_id": step_id},
        )
        return StepSubmissionResult(
            session_id=session.id,
            status=session.status,
            replayed=True,
            outcome=StepOutcome.model_validate(outcome),
            completed=False,
            next_step=_next_step_view(graph, session),
            progress=_progress(session),
        )

    _refresh_cache(session)
    completed = session.status == SimulationStatus.COMPLETED

    logger.info(
        "simulation_step_submitted",
        extra={
            "event": "simulation_step_submitted",
            "session_id": str(session_id),
            "step_id": step_id,
            "is_correct": outcome["is_correct"],
            "points_awarded": outcome["points_awarded"],
            "completed": completed,
        },
    )

    if not completed:
        return StepSubmissionResult(
            session_id=session.id,
            status=session.status,
            outcome=StepOutcome.model_validate(outcome),
            next_step=_next_step_view(graph, session),
            progress=_progress(session),
        )

    logger.info(
        "simulation_session_completed",
        extra={
            "event": "simulation_session_completed",
            "session_id": str(session_id),
            "percentage_score": session.percentage_score,
            "time_spent_seconds": session.time_spent_seconds,
        },
    )
    summary = _completion_summary(session, graph)
    progress = _progress(session)
    _fold_statistics(db, session.id)

    return StepSubmissionResult(
        session_id=session.id,
        status=SimulationStatus.COMPLETED,
        outcome=StepOutcome.model_validate(outcome),
        completed=True,
        progress=progress,
        summary=summary,
    )


async def _transition(db: Session, session_id: UUID, user_id: UUID, action: str) -> SessionStatusChange:
    allowed, target = _TRANSITIONS[action]

    with redis_lock(session_lock_key(session_id), settings.SESSION_LOCK_TTL_SECONDS) as acquired:
        if not acquired:
            raise ConcurrentModification(
                "Another request for this session is in progress",
                details={"session_id": str(session_id)},
            )
        session = _load_session(db, session_id, user_id)
        if session.status.is_terminal:
            raise SessionTerminatedError(
                f"Session is already {session.status.value}",
                details={"session_id": str(session_id), "status": session.status.value},
            )
        if session.status not in allowed:
            raise InvalidStateTransition(
                f"Cannot {action} a session that is {session.status.value}",
                details={"session_id": str(session_id), "status": session.status.value, "action": action},
            )

        now = utcnow()
        history = [dict(entry) for entry in session.pause_history or []]
        if action == "pause":
            history.append({"paused_at": now.isoformat(), "resumed_at": None})
        elif history and history[-1].get("resumed_at") is None:
            history[-1]["resumed_at"] = now.isoformat()
        session.pause_history = history

        if action == "abandon":
            session.ended_at = now
        session.status = target
        _commit(db, session_id)

    _refresh_cache(session)
    logger.info(
        f"simulation_session_{action}",
        extra={"event": f"simulation_session_{action}", "session_id": str(session_id)},
    )
    return SessionStatusChange(
        session_id=session.id,
        status=session.status,
        message=f"Session {target.value}",
    )


async def pause_session(db: Session, session_id: UUID, user_id: UUID) -> SessionStatusChange:
    """started -> paused."""
    return await _transition(db, session_id, user_id, "pause")


async def resume_session(db: Session, session_id: UUID, user_id: UUID) -> SessionStatusChange:
    """paused -> started; closes the open pause interval."""
    return await _transition(db, session_id, user_id, "resume")


async def abandon_session(db: Session, session_id: UUID, user_id: UUID) -> SessionStatusChange:
    """started/paused -> abandoned (terminal). Abandoned sessions are never aggregated."""
    return await _transition(db, session_id, user_id, "abandon")


async def get_session_state(db: Session, session_id: UUID, user_id: UUID) -> SessionStateOut:
    """Durable session state with progress and the next step to present, if any."""
    session = _load_session(db, session_id, user_id)
    graph = _graph_for(db, session)
    return SessionStateOut(
        session=SessionOut.model_validate(session),
        progress=_progress(session),
        next_step=_next_step_view(graph, session),
    )


async def get_session_progress(db: Session, session_id: UUID, user_id: UUID) -> ProgressCounters:
    """
    Progress counters for polling clients.

    Served from the Redis snapshot when present; a miss reads the durable
    record and repopulates the snapshot.
    """
    entry = session_cache.read_entry(session_id)
    if entry is not None and entry.user_id == user_id:
        total = entry.total_steps
        return ProgressCounters(
            steps_completed=entry.steps_completed,
            total_steps=total,
            current_score=entry.score,
            max_score=entry.max_possible_score,
            time_spent_seconds=entry.time_spent_seconds,
            percentage_complete=round_half_up(100 * entry.steps_completed / total) if total else 0,
        )

    session = _load_session(db, session_id, user_id)
    if not session.status.is_terminal:
        session_cache.write_entry(session)
    return _progress(session)


async def submit_feedback(
    db: Session,
    session_id: UUID,
    user_id: UUID,
    feedback: FeedbackSubmit,
) -> FeedbackOut:
    """Attach (or replace) the learner's feedback. Allowed in any status."""
    session = _load_session(db, session_id, user_id)
    stored = FeedbackOut(**feedback.model_dump(), submitted_at=utcnow())
    session.user_feedback = stored.model_dump(mode="json")
    _commit(db, session_id)

    logger.info(
        "simulation_feedback_submitted",
        extra={"event": "simulation_feedback_submitted", "session_id": str(session_id), "rating": feedback.rating},
    )
    return stored
