"""Redis-based distributed locking for per-session serialization."""

import uuid
from contextlib import contextmanager
from typing import Generator

from app.core.logging import get_logger
from app.core.redis_client import get_redis_client

logger = get_logger(__name__)

DEFAULT_LOCK_TTL = 10

# Deletes the key only while it still holds our token, so an expired lock that
# was re-acquired by another request is never released by us.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@contextmanager
def redis_lock(lock_key: str, ttl_seconds: int = DEFAULT_LOCK_TTL) -> Generator[bool, None, None]:
    """
    Acquire a Redis lock with automatic release.

    Usage:
        with redis_lock("lock:simsession:<id>") as acquired:
            if not acquired:
                ...  # another request holds the lock

    Redis being disabled or failing is treated as "acquired" (fail open);
    callers must still guard their writes with optimistic concurrency.

    Args:
        lock_key: Redis key for the lock
        ttl_seconds: Lock TTL in seconds (auto-releases after this time)

    Yields:
        True if lock acquired (or Redis unavailable), False if held elsewhere
    """
    redis_client = get_redis_client()

    if not redis_client:
        logger.debug(f"Redis unavailable, skipping lock: {lock_key}")
        yield True
        return

    token = uuid.uuid4().hex
    try:
        acquired = bool(redis_client.set(lock_key, token, nx=True, ex=ttl_seconds))
    except Exception as e:
        logger.warning(
            "redis_lock_acquire_failed",
            extra={"event": "redis_lock_acquire_failed", "key": lock_key, "error": str(e)},
        )
        yield True
        return

    if acquired:
        logger.debug(f"Acquired lock: {lock_key}")
    else:
        logger.debug(f"Lock already held: {lock_key}")

    try:
        yield acquired
    finally:
        if acquired:
            try:
                redis_client.eval(_RELEASE_SCRIPT, 1, lock_key, token)
                logger.debug(f"Released lock: {lock_key}")
            except Exception as e:
                logger.error(f"Error releasing lock {lock_key}: {e}")


def session_lock_key(session_id: object) -> str:
    return f"lock:simsession:{session_id}"
