"""Tests for the maintenance job CLI."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.jobs.run import run
from app.models.events import SimulationEvent, SimulationEventStatus
from app.models.statistics import CaseStatistics
from app.services.simulation_engine import start_session, submit_step


@pytest.fixture(autouse=True)
def _keep_test_logging():
    with patch("app.jobs.run.setup_logging"):
        yield


async def _complete_without_aggregation(db: Session, case, user_id) -> None:
    started = await start_session(db, user_id, case.case_id)
    await submit_step(db, started.session_id, "s1", "s1_ok", 10, user_id=user_id)
    with patch(
        "app.services.simulation_engine.apply_completion",
        side_effect=RuntimeError("statistics store down"),
    ):
        await submit_step(db, started.session_id, "s2", "s2_ok", 10, user_id=user_id)


@pytest.mark.asyncio
async def test_backfill_aggregates_job(db: Session, two_step_case, user_id) -> None:
    await _complete_without_aggregation(db, two_step_case, user_id)

    result = CliRunner().invoke(run, ["backfill_aggregates"])

    assert result.exit_code == 0, result.output
    assert "1 sessions aggregated" in result.output
    db.expire_all()
    assert db.get(CaseStatistics, two_step_case.case_id).completion_count == 1


@pytest.mark.asyncio
async def test_drain_completion_events_job(db: Session, two_step_case, user_id) -> None:
    await _complete_without_aggregation(db, two_step_case, user_id)

    result = CliRunner().invoke(run, ["drain_completion_events"])

    assert result.exit_code == 0, result.output
    assert "1 events dispatched" in result.output
    db.expire_all()
    event = db.execute(select(SimulationEvent)).scalar_one()
    assert event.status == SimulationEventStatus.DISPATCHED
    assert db.get(CaseStatistics, two_step_case.case_id).completion_count == 1


def test_rebuild_requires_case_id(db: Session) -> None:
    result = CliRunner().invoke(run, ["rebuild_case_statistics"])

    assert result.exit_code == 1
    assert "requires --case-id" in result.output


def test_unknown_job_key_is_rejected() -> None:
    result = CliRunner().invoke(run, ["revision_queue_regen"])

    assert result.exit_code == 2
