"""Persisted plan read endpoint."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from plan_engine.api.schemas.plan_jobs import PlanResponse
from plan_engine.db.deps import get_db
from plan_engine.db.models.weekly_plan import WeeklyPlan

router = APIRouter()


@router.get("/plans/{plan_id}", response_model=PlanResponse, tags=["plans"])
def get_plan(plan_id: UUID, db: Session = Depends(get_db)) -> PlanResponse:
    plan = db.get(WeeklyPlan, plan_id)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return PlanResponse.model_validate(plan)
