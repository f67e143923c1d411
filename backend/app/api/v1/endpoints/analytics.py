"""Analytics endpoints for simulation performance."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_user_id, get_db
from app.schemas.analytics import CaseStatisticsOut, PerformanceReport
from app.services.statistics_service import get_case_statistics, get_user_performance

router = APIRouter()


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/performance", response_model=PerformanceReport)
async def get_performance(
    db: Annotated[Session, Depends(get_db)],
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    timeframe: Annotated[str | None, Query(max_length=16)] = None,
):
    """
    Get the caller's performance report.

    ``timeframe`` is one of 7d, 30d, 90d or all; anything else falls back
    to 30d.
    """
    return get_user_performance(db, user_id, timeframe)


@router.get(
    "/cases/{case_id}/statistics",
    response_model=CaseStatisticsOut,
    dependencies=[Depends(get_current_user_id)],
)
async def get_case_statistics_endpoint(
    case_id: UUID,
    db: Annotated[Session, Depends(get_db)],
):
    """Aggregate attempt and completion statistics for a case."""
    return get_case_statistics(db, case_id)
