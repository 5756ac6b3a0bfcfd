"""Historical plan generation durations, read by the time estimator."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from plan_engine.db.base import Base
from plan_engine.db.types import UTCDateTime


class GenerationRun(Base):
    __tablename__ = "generation_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    timestamp = Column(UTCDateTime, nullable=False, server_default=func.now())
    duration_seconds = Column(Float, nullable=False)
    complexity_score = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
