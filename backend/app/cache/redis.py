"""Redis cache helpers (fail-open).

Any Redis error is logged and reported as a miss / failed write; it never
reaches the caller.
"""

from __future__ import annotations

import json
from typing import Any

from app.core.logging import get_logger
from app.core.redis_client import get_redis_client

logger = get_logger(__name__)


def get_json(key: str) -> Any | None:
    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(key)
        if not raw:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.warning("redis_get_json_failed", extra={"event": "redis_get_json_failed", "key": key, "error": str(e)})
        return None


def set_json(key: str, value: Any, ttl_seconds: int) -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        client.setex(key, int(ttl_seconds), json.dumps(value, default=str))
        return True
    except Exception as e:
        logger.warning("redis_set_json_failed", extra={"event": "redis_set_json_failed", "key": key, "error": str(e)})
        return False


def delete(key: str) -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        client.delete(key)
        return True
    except Exception as e:
        logger.warning("redis_delete_failed", extra={"event": "redis_delete_failed", "key": key, "error": str(e)})
        return False
