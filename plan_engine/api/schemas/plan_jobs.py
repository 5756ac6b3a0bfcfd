"""Schemas for plan generation job endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from plan_engine.services.profile import ProfileSnapshot


class RedoPayload(BaseModel):
    redo: bool = False
    reason: Optional[str] = None
    redo_type: Literal["workout", "nutrition", "both"] = "both"


class PlanJobCreateRequest(BaseModel):
    owner_id: UUID
    profile: ProfileSnapshot
    redo: Optional[RedoPayload] = None


class PlanJobCreateResponse(BaseModel):
    status: Literal["created", "existing", "redo_started", "error"]
    job_id: Optional[UUID] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    request_id: str


class OwnerRequest(BaseModel):
    owner_id: UUID


class PlanJobStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    result_plan_id: Optional[UUID] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    max_retries: int
    is_redo: bool = False
    is_stuck: bool = False


class ActivePlanJobResponse(BaseModel):
    job: Optional[PlanJobStatusResponse] = None
    request_id: str


class ProcessNextResponse(BaseModel):
    processed: bool
    job: Optional[PlanJobStatusResponse] = None
    request_id: str


class PlanEstimateRequest(BaseModel):
    profile: ProfileSnapshot
    elapsed_seconds: Optional[float] = Field(default=None, ge=0)


class PlanEstimateResponse(BaseModel):
    seconds: int
    min_seconds: int
    max_seconds: int
    confidence: Literal["low", "medium", "high"]
    source: str
    complexity: int
    breakdown: List[str]
    progress_message: Optional[str] = None
    remaining_message: Optional[str] = None
    request_id: str


class PlanResponse(BaseModel):
    """Persisted plan as clients read it (camelCase)."""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: UUID
    days: Dict[str, Any]
    created_at: datetime
    status: str
    is_locked: bool
    generation_notes: Optional[Dict[str, Any]] = None
