"""Clinical case models (published case graphs)."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, Text, Uuid

from app.common.clock import utcnow
from app.db.base import Base
from app.db.types import JSONType, enum_values


class CaseStatus(str, PyEnum):
    """Editorial status of a case. Only PUBLISHED cases can be simulated."""

    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CaseDifficulty(str, PyEnum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ClinicalCase(Base):
    """A clinical case and its step graph."""

    __tablename__ = "clinical_cases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    specialty = Column(String(100), nullable=False)
    difficulty = Column(
        Enum(CaseDifficulty, name="case_difficulty", values_callable=enum_values),
        nullable=False,
    )
    status = Column(
        Enum(CaseStatus, name="case_status", values_callable=enum_values),
        nullable=False,
        default=CaseStatus.DRAFT,
    )
    chief_complaint = Column(Text, nullable=False, default="")

    max_score = Column(Integer, nullable=False)
    expected_duration_seconds = Column(Integer, nullable=False)

    # Ordered step list: [{step_id, title, description, question, prerequisite_ids, options: [...]}]
    steps_json = Column(JSONType, nullable=False)

    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    __table_args__ = (
        Index("ix_clinical_cases_status", "status"),
        Index("ix_clinical_cases_specialty", "specialty"),
    )
