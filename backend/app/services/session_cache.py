"""Ephemeral session snapshot kept in Redis.

Advisory only. The durable ``SimulationSession`` row is the source of truth;
every entry here can be rebuilt from it and may vanish at any time.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError

from app.cache.helpers import session_key
from app.cache.redis import delete, get_json, set_json
from app.core.config import settings
from app.core.logging import get_logger
from app.models.simulation import SimulationSession, SimulationStatus

logger = get_logger(__name__)


class SessionCacheEntry(BaseModel):
    session_id: UUID
    user_id: UUID
    case_id: UUID
    status: SimulationStatus
    completed_step_ids: list[str]
    steps_completed: int
    total_steps: int
    score: int
    max_possible_score: int
    time_spent_seconds: int

    @classmethod
    def from_session(cls, session: SimulationSession) -> "SessionCacheEntry":
        return cls(
            session_id=session.id,
            user_id=session.user_id,
            case_id=session.case_id,
            status=session.status,
            completed_step_ids=[entry["step_id"] for entry in session.step_performance or []],
            steps_completed=session.steps_completed,
            total_steps=session.total_steps,
            score=session.score,
            max_possible_score=session.max_possible_score,
            time_spent_seconds=session.time_spent_seconds,
        )


def read_entry(session_id: UUID) -> SessionCacheEntry | None:
    """Return the cached snapshot, or None on miss, Redis failure or a corrupt entry."""
    raw: Any = get_json(session_key(session_id))
    if raw is None:
        logger.debug(
            "session_cache_miss",
            extra={"event": "session_cache_miss", "session_id": str(session_id)},
        )
        return None
    try:
        return SessionCacheEntry.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "session_cache_corrupt",
            extra={"event": "session_cache_corrupt", "session_id": str(session_id), "error": str(e)},
        )
        evict(session_id)
        return None


def write_entry(session: SimulationSession) -> bool:
    """Write-through after a durable change. Never raises."""
    entry = SessionCacheEntry.from_session(session)
    return set_json(
        session_key(session.id),
        entry.model_dump(mode="json"),
        settings.SESSION_CACHE_TTL_SECONDS,
    )


def evict(session_id: UUID) -> bool:
    return delete(session_key(session_id))
