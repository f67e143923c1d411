"""FastAPI dependencies for caller identity."""

from typing import Annotated
from uuid import UUID

from fastapi import Header, HTTPException, status

# Re-exported so endpoints import their dependencies from one place
from app.db.session import get_db  # noqa: F401


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """
    Identity of the caller, as asserted by the authenticating gateway.

    Authentication happens upstream; this service only trusts the
    ``X-User-Id`` header it forwards.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header missing",
        )

    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header. Expected a UUID",
        ) from None
