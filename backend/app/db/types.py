"""Portable column types."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_values(enum_cls) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]
