"""Tests for the simulation session engine (start, steps, lifecycle, concurrency)."""

import json
import logging
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.cache.helpers import session_key
from app.core.app_exceptions import (
    CaseUnavailable,
    ConcurrentModification,
    InvalidStateTransition,
    SessionNotFound,
    SessionTerminatedError,
    UnknownOption,
    UnknownStep,
)
from app.db.session import SessionLocal
from app.models.case import CaseStatus
from app.models.events import SimulationEvent
from app.models.simulation import SimulationSession, SimulationStatus
from app.models.statistics import CaseStatistics, UserStatistics
from app.schemas.case_graph import CaseStep, StepOption
from app.schemas.simulation import FeedbackSubmit
from app.services import simulation_engine
from app.services.case_catalog import save_case
from app.services.simulation_engine import (
    abandon_session,
    get_session_progress,
    get_session_state,
    pause_session,
    resume_session,
    start_session,
    submit_feedback,
    submit_step,
)
from app.services.statistics_service import backfill_pending_aggregates
from tests.helpers.seed import create_published_case, make_graph, make_step


@pytest.fixture
def reference_case(db: Session):
    """step1 {a: correct 10, b: incorrect 0}; step2 (after step1) {a: correct 10}."""
    steps = (
        CaseStep(
            step_id="step1",
            question="Initial management?",
            options=(
                StepOption(option_id="a", text="ECG", is_correct=True, points=10),
                StepOption(option_id="b", text="Discharge", is_correct=False, points=0),
            ),
        ),
        CaseStep(
            step_id="step2",
            question="Diagnosis?",
            prerequisite_ids=frozenset({"step1"}),
            options=(StepOption(option_id="a", text="STEMI", is_correct=True, points=10),),
        ),
    )
    return create_published_case(db, steps, max_score=20)


def _durable(session_id) -> SimulationSession:
    with SessionLocal() as fresh:
        return fresh.get(SimulationSession, session_id)


# ============================================================================
# Start
# ============================================================================


@pytest.mark.asyncio
async def test_start_session_presents_first_step(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    assert started.status == SimulationStatus.STARTED
    assert started.case.total_steps == 2
    assert started.next_step.step_id == "step1"
    assert [o.option_id for o in started.next_step.options] == ["a", "b"]
    assert started.progress.steps_completed == 0
    assert started.progress.max_score == 20

    stats = db.get(CaseStatistics, reference_case.case_id)
    assert stats.attempt_count == 1
    assert stats.completion_count == 0


@pytest.mark.asyncio
async def test_start_draft_case_creates_nothing(db: Session, user_id) -> None:
    graph = make_graph((make_step("s1"),))
    save_case(db, graph)
    assert graph.status == CaseStatus.DRAFT

    with pytest.raises(CaseUnavailable):
        await start_session(db, user_id, graph.case_id)

    assert db.execute(select(func.count()).select_from(SimulationSession)).scalar_one() == 0


@pytest.mark.asyncio
async def test_start_unknown_case(db: Session, user_id) -> None:
    with pytest.raises(CaseUnavailable):
        await start_session(db, user_id, uuid.uuid4())


# ============================================================================
# Step submission
# ============================================================================


@pytest.mark.asyncio
async def test_all_correct_run_completes_with_full_marks(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    first = await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    assert first.completed is False
    assert first.next_step.step_id == "step2"
    assert first.outcome.points_awarded == 10

    result = await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    assert result.completed is True
    assert result.next_step is None
    summary = result.summary
    assert summary.final_score == 20
    assert summary.percentage_score == 100
    assert summary.accuracy == 100
    assert summary.performance == "Excellent"
    assert summary.time_spent_seconds == 75
    assert summary.recommendations == []
    assert [d.step_id for d in summary.step_details] == ["step1", "step2"]

    session = _durable(started.session_id)
    assert session.status == SimulationStatus.COMPLETED
    assert session.ended_at is not None
    assert session.aggregated_at is not None


@pytest.mark.asyncio
async def test_incorrect_first_answer_halves_score(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    await submit_step(db, started.session_id, "step1", "b", 30, user_id=user_id)
    result = await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    assert result.summary.final_score == 10
    assert result.summary.percentage_score == 50
    assert result.summary.accuracy == 50
    assert result.summary.performance == "Poor"
    assert "Review clinical reasoning for diagnostic steps" in result.summary.recommendations


@pytest.mark.asyncio
async def test_incorrect_option_awards_no_points(db: Session, two_step_case, user_id) -> None:
    started = await start_session(db, user_id, two_step_case.case_id)

    result = await submit_step(db, started.session_id, "s1", "s1_bad", 10, user_id=user_id)

    assert result.outcome.is_correct is False
    assert result.outcome.points_awarded == 0
    assert result.progress.current_score == 0


@pytest.mark.asyncio
async def test_resubmitting_a_step_is_idempotent(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    first = await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)

    replay = await submit_step(db, started.session_id, "step1", "b", 99, user_id=user_id)

    assert replay.replayed is True
    assert replay.outcome == first.outcome
    session = _durable(started.session_id)
    assert session.score == 10
    assert session.steps_completed == 1
    assert session.time_spent_seconds == 30
    assert len(session.step_performance) == 1


@pytest.mark.asyncio
async def test_unknown_step_and_option_are_rejected(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    with pytest.raises(UnknownStep):
        await submit_step(db, started.session_id, "step9", "a", user_id=user_id)
    with pytest.raises(UnknownOption):
        await submit_step(db, started.session_id, "step1", "z", user_id=user_id)

    assert _durable(started.session_id).steps_completed == 0


@pytest.mark.asyncio
async def test_other_users_session_is_not_found(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    with pytest.raises(SessionNotFound):
        await submit_step(db, started.session_id, "step1", "a", user_id=uuid.uuid4())
    with pytest.raises(SessionNotFound):
        await submit_step(db, uuid.uuid4(), "step1", "a", user_id=user_id)


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_pause_then_resume_preserves_progress(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    before = _durable(started.session_id)

    paused = await pause_session(db, started.session_id, user_id)
    assert paused.status == SimulationStatus.PAUSED
    resumed = await resume_session(db, started.session_id, user_id)
    assert resumed.status == SimulationStatus.STARTED

    after = _durable(started.session_id)
    assert after.score == before.score
    assert after.steps_completed == before.steps_completed
    assert after.step_performance == before.step_performance
    assert len(after.pause_history) == 1
    assert after.pause_history[0]["resumed_at"] is not None


@pytest.mark.asyncio
async def test_paused_session_rejects_new_steps(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await pause_session(db, started.session_id, user_id)

    with pytest.raises(InvalidStateTransition):
        await submit_step(db, started.session_id, "step1", "a", user_id=user_id)
    with pytest.raises(InvalidStateTransition):
        await pause_session(db, started.session_id, user_id)


@pytest.mark.asyncio
async def test_resume_of_running_session_is_rejected(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)

    with pytest.raises(InvalidStateTransition):
        await resume_session(db, started.session_id, user_id)


@pytest.mark.asyncio
async def test_abandoned_session_is_terminal(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await abandon_session(db, started.session_id, user_id)

    with pytest.raises(SessionTerminatedError):
        await submit_step(db, started.session_id, "step1", "a", user_id=user_id)
    for transition in (pause_session, resume_session, abandon_session):
        with pytest.raises(SessionTerminatedError):
            await transition(db, started.session_id, user_id)

    session = _durable(started.session_id)
    assert session.status == SimulationStatus.ABANDONED
    assert session.ended_at is not None
    assert session.aggregated_at is None


@pytest.mark.asyncio
async def test_completed_session_rejects_further_mutation(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    with pytest.raises(SessionTerminatedError):
        await submit_step(db, started.session_id, "step2", "a", user_id=user_id)
    with pytest.raises(SessionTerminatedError):
        await pause_session(db, started.session_id, user_id)
    with pytest.raises(SessionTerminatedError):
        await resume_session(db, started.session_id, user_id)


@pytest.mark.asyncio
async def test_feedback_on_completed_session(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    stored = await submit_feedback(
        db,
        started.session_id,
        user_id,
        FeedbackSubmit(rating=4, difficulty="just_right", comments="Good case", would_recommend=True),
    )

    assert stored.rating == 4
    session = _durable(started.session_id)
    assert session.user_feedback["difficulty"] == "just_right"
    assert session.status == SimulationStatus.COMPLETED
    assert session.score == 20


@pytest.mark.asyncio
async def test_session_state_includes_next_step(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "b", 12, user_id=user_id)

    state = await get_session_state(db, started.session_id, user_id)

    assert state.session.status == SimulationStatus.STARTED
    assert state.next_step.step_id == "step2"
    assert state.progress.percentage_complete == 50
    assert state.session.step_performance[0].selected_option_id == "b"


# ============================================================================
# Cache and concurrency
# ============================================================================


@pytest.mark.asyncio
async def test_cache_eviction_mid_session_changes_nothing(
    db: Session, reference_case, user_id, fake_redis
) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    assert session_key(started.session_id) in fake_redis.store

    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    fake_redis.store.clear()

    progress = await get_session_progress(db, started.session_id, user_id)
    assert progress.steps_completed == 1
    assert session_key(started.session_id) in fake_redis.store

    fake_redis.store.clear()
    result = await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    assert result.summary.final_score == 20
    assert session_key(started.session_id) not in fake_redis.store


@pytest.mark.asyncio
async def test_stale_cache_entry_never_decides_outcome(
    db: Session, reference_case, user_id, fake_redis, caplog
) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    key = session_key(started.session_id)
    entry = json.loads(fake_redis.store[key])
    entry["completed_step_ids"] = ["step1", "step2"]
    fake_redis.store[key] = json.dumps(entry)

    with caplog.at_level(logging.WARNING):
        result = await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)

    assert result.replayed is False
    assert result.next_step.step_id == "step2"
    assert _durable(started.session_id).score == 10
    assert "session_cache_stale" in caplog.messages
    assert json.loads(fake_redis.store[key])["completed_step_ids"] == ["step1"]


@pytest.mark.asyncio
async def test_redis_outage_does_not_fail_requests(
    db: Session, reference_case, user_id, fake_redis
) -> None:
    fake_redis.down = True

    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    progress = await get_session_progress(db, started.session_id, user_id)

    assert progress.current_score == 10


@pytest.mark.asyncio
async def test_held_lock_rejects_submission(db: Session, reference_case, user_id, fake_redis) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    fake_redis.set(f"lock:simsession:{started.session_id}", "someone-else")

    with pytest.raises(ConcurrentModification):
        await submit_step(db, started.session_id, "step1", "a", user_id=user_id)

    assert fake_redis.store[f"lock:simsession:{started.session_id}"] == "someone-else"
    assert _durable(started.session_id).steps_completed == 0


@pytest.mark.asyncio
async def test_stale_write_is_rejected(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    original_load = simulation_engine._load_session

    def racing_load(session_db, session_id, owner_id):
        session = original_load(session_db, session_id, owner_id)
        with SessionLocal() as other:
            row = other.get(SimulationSession, session_id)
            row.time_spent_seconds = row.time_spent_seconds + 1
            other.commit()
        return session

    with patch.object(simulation_engine, "_load_session", side_effect=racing_load):
        with pytest.raises(ConcurrentModification):
            await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)

    session = _durable(started.session_id)
    assert session.steps_completed == 0
    assert session.step_performance == []
    assert session.time_spent_seconds == 1


# ============================================================================
# Completion side effects
# ============================================================================


@pytest.mark.asyncio
async def test_completion_emits_exactly_one_event(db: Session, reference_case, user_id) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)
    await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)
    with pytest.raises(SessionTerminatedError):
        await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    events = db.execute(select(SimulationEvent)).scalars().all()
    assert len(events) == 1
    assert events[0].payload["percentage_score"] == 100
    assert events[0].session_id == started.session_id


@pytest.mark.asyncio
async def test_aggregation_failure_does_not_fail_completion(
    db: Session, reference_case, user_id
) -> None:
    started = await start_session(db, user_id, reference_case.case_id)
    await submit_step(db, started.session_id, "step1", "a", 30, user_id=user_id)

    with patch(
        "app.services.simulation_engine.apply_completion",
        side_effect=RuntimeError("statistics store down"),
    ):
        result = await submit_step(db, started.session_id, "step2", "a", 45, user_id=user_id)

    assert result.completed is True
    session = _durable(started.session_id)
    assert session.status == SimulationStatus.COMPLETED
    assert session.aggregated_at is None
    assert db.get(UserStatistics, user_id) is None

    assert backfill_pending_aggregates(db) == 1
    assert backfill_pending_aggregates(db) == 0

    stats = db.get(CaseStatistics, reference_case.case_id)
    assert stats.completion_count == 1
    assert stats.average_score == 100.0
    assert db.get(UserStatistics, user_id).cases_completed == 1
