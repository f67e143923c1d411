"""Pydantic schemas for performance analytics."""

from datetime import date
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

# ============================================================================
# Analytics Response Schemas
# ============================================================================


class PartitionSummary(BaseModel):
    """Completions within one specialty or difficulty."""

    cases_completed: int
    average_score: float
    average_time: float


class WeeklyTrend(BaseModel):
    """Completions within one Monday-aligned week."""

    week: date
    cases_completed: int
    average_score: float
    average_time: float


class PerformanceReport(BaseModel):
    """Time-windowed performance report for one learner."""

    user_id: UUID
    timeframe: Literal["7d", "30d", "90d", "all"]
    cases_completed: int
    average_score: float
    total_time_spent: int
    average_time_per_case: float
    specialty_breakdown: dict[str, PartitionSummary]
    difficulty_breakdown: dict[str, PartitionSummary]
    weekly_trend: list[WeeklyTrend]


class CaseStatisticsOut(BaseModel):
    case_id: UUID
    attempt_count: int
    completion_count: int
    average_score: float
    average_time_spent: float
