"""Time helpers.

Timestamps are stored as naive UTC so that PostgreSQL and SQLite compare the
same way.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
