"""Plan generation job ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID

from plan_engine.db.base import Base
from plan_engine.db.types import JSONBCompat, UTCDateTime


class PlanJob(Base):
    __tablename__ = "plan_generation_jobs"
    __table_args__ = (
        Index("ix_plan_jobs_status_created", "status", "created_at"),
        Index("ix_plan_jobs_status_locked", "status", "locked_until"),
        Index("ix_plan_jobs_user_status", "user_id", "status"),
        # At most one active job per owner.
        Index(
            "uq_plan_jobs_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    status = Column(String(length=20), nullable=False, default="pending", server_default="pending")
    profile_snapshot = Column(JSONBCompat, nullable=False, default=dict)

    result_plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("weekly_base_plans.id", ondelete="SET NULL"),
        nullable=True,
    )
    error_code = Column(String(length=50), nullable=True)
    error_message = Column(Text, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    max_retries = Column(Integer, nullable=False, default=3, server_default="3")

    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    # Persisted form of the processing lease.
    worker_id = Column(String(length=100), nullable=True)
    locked_until = Column(UTCDateTime, nullable=True)

    is_redo = Column(Boolean, nullable=False, default=False, server_default="0")
    redo_reason = Column(Text, nullable=True)
    redo_type = Column(String(length=20), nullable=True)
    source_plan_id = Column(UUID(as_uuid=True), nullable=True)
