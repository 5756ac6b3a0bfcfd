"""Daily check-in ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from plan_engine.db.base import Base
from plan_engine.db.types import JSONBCompat, UTCDateTime


class CheckIn(Base):
    __tablename__ = "checkins"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_checkins_user_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    date = Column(Date, nullable=False)
    energy = Column(Integer, nullable=True)
    sleep_hrs = Column(Float, nullable=True)
    stress = Column(Integer, nullable=True)
    water_l = Column(Float, nullable=True)
    soreness = Column(JSONBCompat, nullable=True)
    digestion = Column(String(length=20), nullable=True)
    current_weight = Column(Float, nullable=True)
    special_request = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, server_default=func.now(), onupdate=func.now())
