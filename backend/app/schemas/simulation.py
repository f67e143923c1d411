"""Pydantic schemas for simulation sessions."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.simulation import SimulationStatus
from app.schemas.case_graph import CaseBrief, StepView

# ============================================================================
# Step outcomes and progress
# ============================================================================


class StepOutcome(BaseModel):
    """Recorded result of one answered step."""

    step_id: str
    selected_option_id: str
    is_correct: bool
    points_awarded: int
    time_spent_seconds: int
    answered_at: datetime


class ProgressCounters(BaseModel):
    steps_completed: int
    total_steps: int
    current_score: int
    max_score: int
    time_spent_seconds: int
    percentage_complete: int


class CompletionSummary(BaseModel):
    """Returned once, when the last eligible step is answered."""

    session_id: UUID
    case_title: str
    final_score: int
    max_score: int
    percentage_score: int
    time_spent_seconds: int
    steps_completed: int
    total_steps: int
    accuracy: int
    performance: str
    step_details: list[StepOutcome]
    recommendations: list[str]


# ============================================================================
# Engine operations
# ============================================================================


class SessionStartResponse(BaseModel):
    session_id: UUID
    status: SimulationStatus
    started_at: datetime
    case: CaseBrief
    next_step: StepView | None
    progress: ProgressCounters


class StepSubmit(BaseModel):
    """Answer for one step."""

    step_id: str = Field(..., min_length=1, max_length=64)
    option_id: str = Field(..., min_length=1, max_length=64)
    time_spent_seconds: int = Field(default=0, ge=0, le=86400)


class StepSubmissionResult(BaseModel):
    """Either the next step to present, or the completion summary.

    ``replayed`` is true when the step had already been recorded; the
    original outcome is returned and nothing changes.
    """

    session_id: UUID
    status: SimulationStatus
    replayed: bool = False
    outcome: StepOutcome
    completed: bool = False
    next_step: StepView | None = None
    progress: ProgressCounters
    summary: CompletionSummary | None = None


class SessionStatusChange(BaseModel):
    session_id: UUID
    status: SimulationStatus
    message: str


# ============================================================================
# Feedback
# ============================================================================


class FeedbackSubmit(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    difficulty: Literal["too_easy", "just_right", "too_hard"] | None = None
    comments: str | None = Field(default=None, max_length=2000)
    would_recommend: bool | None = None


class FeedbackOut(FeedbackSubmit):
    submitted_at: datetime


# ============================================================================
# Session state
# ============================================================================


class PauseInterval(BaseModel):
    paused_at: datetime
    resumed_at: datetime | None = None


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    case_id: UUID
    status: SimulationStatus
    score: int
    max_possible_score: int
    percentage_score: int
    steps_completed: int
    total_steps: int
    time_spent_seconds: int
    step_performance: list[StepOutcome]
    pause_history: list[PauseInterval]
    user_feedback: FeedbackOut | None
    started_at: datetime
    ended_at: datetime | None


class SessionStateOut(BaseModel):
    session: SessionOut
    progress: ProgressCounters
    next_step: StepView | None
