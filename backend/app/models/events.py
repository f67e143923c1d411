"""Outbox table for simulation lifecycle events."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, Index, UniqueConstraint, Uuid

from app.common.clock import utcnow
from app.db.base import Base
from app.db.types import JSONType, enum_values


class SimulationEventType(str, PyEnum):
    SESSION_COMPLETED = "SESSION_COMPLETED"


class SimulationEventStatus(str, PyEnum):
    PENDING = "pending"
    DISPATCHED = "dispatched"


class SimulationEvent(Base):
    """Outbox row consumed by notification / analytics collaborators.

    One row per (session, event type); written in the same transaction as the
    state change it announces.
    """

    __tablename__ = "simulation_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(
        Enum(SimulationEventType, name="simulation_event_type", values_callable=enum_values),
        nullable=False,
    )
    session_id = Column(Uuid, nullable=False)
    payload = Column(JSONType, nullable=False)
    status = Column(
        Enum(SimulationEventStatus, name="simulation_event_status", values_callable=enum_values),
        nullable=False,
        default=SimulationEventStatus.PENDING,
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    dispatched_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "event_type", name="uq_simulation_event_session_type"),
        Index("ix_simulation_events_status_created", "status", "created_at"),
    )
