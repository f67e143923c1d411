"""Health and readiness endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import get_request_id
from app.core.redis_client import is_redis_available
from app.db.session import get_db

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ReadinessCheck(BaseModel):
    status: Literal["ok", "degraded", "down"]
    message: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness of the database and the (optional) session cache."""

    status: Literal["ok", "degraded", "down"]
    checks: dict[str, ReadinessCheck]
    request_id: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
)
async def health_check() -> HealthResponse:
    """Liveness only."""
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Database must answer; Redis only degrades readiness unless REDIS_REQUIRED is set.",
)
async def readiness_check(
    request: Request,
    db: Session = Depends(get_db),
) -> ReadinessResponse:
    request_id = get_request_id(request)
    checks: dict[str, ReadinessCheck] = {}
    overall_status: Literal["ok", "degraded", "down"] = "ok"

    try:
        db.execute(text("SELECT 1"))
        checks["db"] = ReadinessCheck(status="ok")
    except Exception as e:
        checks["db"] = ReadinessCheck(status="down", message=str(e))
        overall_status = "down"

    if not settings.REDIS_ENABLED:
        checks["redis"] = ReadinessCheck(status="ok", message="Not enabled")
    elif is_redis_available():
        checks["redis"] = ReadinessCheck(status="ok")
    else:
        checks["redis"] = ReadinessCheck(status="degraded", message="Redis unavailable")
        if settings.REDIS_REQUIRED:
            overall_status = "down"
        elif overall_status == "ok":
            overall_status = "degraded"

    return ReadinessResponse(
        status=overall_status,
        checks=checks,
        request_id=request_id,
    )
