"""Simulation session models (one durable record per attempt)."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Uuid

from app.common.clock import utcnow
from app.db.base import Base
from app.db.types import JSONType, enum_values


class SimulationStatus(str, PyEnum):
    """Simulation session status.

    STARTED <-> PAUSED, STARTED -> COMPLETED, {STARTED, PAUSED} -> ABANDONED.
    """

    STARTED = "started"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SimulationStatus.COMPLETED, SimulationStatus.ABANDONED)


class SimulationSession(Base):
    """A learner's attempt at a case (a.k.a. progress record).

    Every UPDATE is guarded by ``version`` (compare-and-swap); a stale write
    raises ``StaleDataError`` on flush.
    """

    __tablename__ = "simulation_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    case_id = Column(Uuid, ForeignKey("clinical_cases.id", onupdate="CASCADE"), nullable=False)

    status = Column(
        Enum(SimulationStatus, name="simulation_status", values_callable=enum_values),
        nullable=False,
        default=SimulationStatus.STARTED,
    )

    # Scoring
    score = Column(Integer, nullable=False, default=0)
    max_possible_score = Column(Integer, nullable=False)
    percentage_score = Column(Integer, nullable=False, default=0)  # 0..100

    # Progress
    steps_completed = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False)
    time_spent_seconds = Column(Integer, nullable=False, default=0)

    # [{step_id, selected_option_id, is_correct, points_awarded, time_spent_seconds, answered_at}]
    # Reassign (never mutate in place) so the change is flushed.
    step_performance = Column(JSONType, nullable=False, default=list)
    # [{paused_at, resumed_at}]
    pause_history = Column(JSONType, nullable=False, default=list)
    # {rating, difficulty, comments, would_recommend, submitted_at}
    user_feedback = Column(JSONType, nullable=True)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)  # set iff status is terminal
    aggregated_at = Column(DateTime, nullable=True)  # set once folded into statistics

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_simulation_sessions_user_status", "user_id", "status"),
        Index("ix_simulation_sessions_case_status", "case_id", "status"),
        Index("ix_simulation_sessions_ended_at", "ended_at"),
    )

    @property
    def completed_step_ids(self) -> set[str]:
        return {entry["step_id"] for entry in self.step_performance or []}

    def recorded_outcome(self, step_id: str) -> dict | None:
        for entry in self.step_performance or []:
            if entry["step_id"] == step_id:
                return entry
        return None
