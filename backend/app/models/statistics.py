"""Aggregate statistics models (running case and user performance).

Both tables are updated by read-modify-write guarded by ``version``.
Averages are stored unrounded so incremental maintenance matches a full
recomputation from session history.
"""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, Uuid

from app.common.clock import utcnow
from app.db.base import Base


class CaseStatistics(Base):
    __tablename__ = "case_statistics"

    case_id = Column(
        Uuid,
        ForeignKey("clinical_cases.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    completion_count = Column(Integer, nullable=False, default=0)
    average_score = Column(Float, nullable=False, default=0.0)
    average_time_spent = Column(Float, nullable=False, default=0.0)

    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, nullable=True, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}


class UserStatistics(Base):
    __tablename__ = "user_statistics"

    user_id = Column(Uuid, primary_key=True)
    cases_completed = Column(Integer, nullable=False, default=0)
    average_score = Column(Float, nullable=False, default=0.0)
    total_time_spent = Column(Integer, nullable=False, default=0)
    last_completed_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, nullable=True, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
