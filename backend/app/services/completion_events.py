"""Completion event outbox.

The engine stages one ``SESSION_COMPLETED`` row in the same transaction that
completes the session; notification and analytics collaborators drain the
pending rows on their own schedule.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.common.clock import utcnow
from app.core.logging import get_logger
from app.models.events import SimulationEvent, SimulationEventStatus, SimulationEventType
from app.models.simulation import SimulationSession

logger = get_logger(__name__)


def completion_payload(session: SimulationSession) -> dict[str, Any]:
    return {
        "session_id": str(session.id),
        "user_id": str(session.user_id),
        "case_id": str(session.case_id),
        "percentage_score": session.percentage_score,
        "time_spent_seconds": session.time_spent_seconds,
    }


def stage_completion_event(db: Session, session: SimulationSession) -> SimulationEvent:
    """Add the completion event to the current transaction (caller commits)."""
    event = SimulationEvent(
        event_type=SimulationEventType.SESSION_COMPLETED,
        session_id=session.id,
        payload=completion_payload(session),
        status=SimulationEventStatus.PENDING,
    )
    db.add(event)
    return event


def fetch_pending_events(db: Session, limit: int = 100) -> list[SimulationEvent]:
    stmt = (
        select(SimulationEvent)
        .where(SimulationEvent.status == SimulationEventStatus.PENDING)
        .order_by(SimulationEvent.created_at)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def mark_events_dispatched(db: Session, events: list[SimulationEvent]) -> int:
    """Mark events as delivered by the consumer. Returns the number updated."""
    if not events:
        return 0
    now = utcnow()
    for event in events:
        event.status = SimulationEventStatus.DISPATCHED
        event.dispatched_at = now
    db.commit()
    logger.debug(f"Marked {len(events)} simulation events dispatched")
    return len(events)
