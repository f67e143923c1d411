"""Database models."""

# Import all models here so metadata and Alembic can detect them
from app.models.case import CaseDifficulty, CaseStatus, ClinicalCase
from app.models.events import SimulationEvent, SimulationEventStatus, SimulationEventType
from app.models.simulation import SimulationSession, SimulationStatus
from app.models.statistics import CaseStatistics, UserStatistics

__all__ = [
    "CaseDifficulty",
    "CaseStatus",
    "ClinicalCase",
    "SimulationEvent",
    "SimulationEventStatus",
    "SimulationEventType",
    "SimulationSession",
    "SimulationStatus",
    "CaseStatistics",
    "UserStatistics",
]
