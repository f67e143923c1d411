"""Simulation session endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user_id, get_db
from app.schemas.simulation import (
    FeedbackOut,
    FeedbackSubmit,
    ProgressCounters,
    SessionStartResponse,
    SessionStateOut,
    SessionStatusChange,
    StepSubmissionResult,
    StepSubmit,
)
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

router = APIRouter()


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/start/{case_id}", response_model=SessionStartResponse, status_code=201)
async def start_simulation(
    case_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    """
    Start a simulation of a published case.

    Returns the case brief and the first step to present.
    """
    return await start_session(db, user_id, case_id)


@router.post("/step/{session_id}", response_model=StepSubmissionResult)
async def submit_simulation_step(
    session_id: UUID,
    payload: StepSubmit,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    """
    Answer one step.

    Idempotent per step: resubmitting returns the recorded outcome with
    ``replayed`` set. The final step returns the completion summary.
    """
    return await submit_step(
        db,
        session_id,
        payload.step_id,
        payload.option_id,
        time_spent_seconds=payload.time_spent_seconds,
        user_id=user_id,
    )


@router.get("/session/{session_id}", response_model=SessionStateOut)
async def get_simulation_session(
    session_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    """Full session state with the next step to present, if any."""
    return await get_session_state(db, session_id, user_id)


@router.get("/session/{session_id}/progress", response_model=ProgressCounters)
async def get_simulation_progress(
    session_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    return await get_session_progress(db, session_id, user_id)


@router.patch("/session/{session_id}/pause", response_model=SessionStatusChange)
async def pause_simulation(
    session_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    return await pause_session(db, session_id, user_id)


@router.patch("/session/{session_id}/resume", response_model=SessionStatusChange)
async def resume_simulation(
    session_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    return await resume_session(db, session_id, user_id)


@router.patch("/session/{session_id}/abandon", response_model=SessionStatusChange)
async def abandon_simulation(
    session_id: UUID,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    """Abandon the session. Abandoned sessions never count toward statistics."""
    return await abandon_session(db, session_id, user_id)


@router.post("/session/{session_id}/feedback", response_model=FeedbackOut)
async def submit_simulation_feedback(
    session_id: UUID,
    payload: FeedbackSubmit,
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
):
    return await submit_feedback(db, session_id, user_id, payload)
