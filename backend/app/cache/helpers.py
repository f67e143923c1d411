"""Cache key builders."""

from __future__ import annotations

from uuid import UUID


def session_key(session_id: UUID | str) -> str:
    return f"simsession:{session_id}"


def performance_key(user_id: UUID | str, timeframe: str) -> str:
    return f"performance:{user_id}:{timeframe}"
