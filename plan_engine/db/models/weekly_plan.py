"""Weekly base plan ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from plan_engine.db.base import Base
from plan_engine.db.types import JSONBCompat, UTCDateTime


class WeeklyPlan(Base):
    __tablename__ = "weekly_base_plans"
    __table_args__ = (Index("ix_weekly_base_plans_user_created", "user_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    days = Column(JSONBCompat, nullable=False, default=dict)
    # pending | generating | generated | active | archived
    status = Column(String(length=20), nullable=False, default="generated", server_default="generated")
    is_locked = Column(Boolean, nullable=False, default=False, server_default="0")
    generation_job_id = Column(UUID(as_uuid=True), nullable=True)
    generation_notes = Column(JSONBCompat, nullable=True)
    redo_count_today = Column(Integer, nullable=False, default=0, server_default="0")
    last_redo_date = Column(Date, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
