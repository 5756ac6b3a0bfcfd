"""Generation time estimate endpoint used for client progress UI."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from plan_engine.api.schemas.plan_jobs import PlanEstimateRequest, PlanEstimateResponse
from plan_engine.core.config import settings
from plan_engine.db.deps import get_db
from plan_engine.services.time_estimator import (
    GenerationHistoryStore,
    estimate,
    progress_message,
    remaining_time_message,
)

router = APIRouter()


@router.post("/plan-estimates", response_model=PlanEstimateResponse, tags=["plans"])
def estimate_plan_time(
    request: Request,
    payload: PlanEstimateRequest,
    db: Session = Depends(get_db),
) -> PlanEstimateResponse:
    request_id = getattr(request.state, "request_id", None)
    history = GenerationHistoryStore(db, settings.estimate_history_limit).recent()
    result = estimate(payload.profile, history)

    progress = remaining = None
    if payload.elapsed_seconds is not None:
        progress = progress_message(payload.elapsed_seconds, result)
        remaining = remaining_time_message(payload.elapsed_seconds, result)

    return PlanEstimateResponse(
        seconds=result.seconds,
        min_seconds=result.min_seconds,
        max_seconds=result.max_seconds,
        confidence=result.confidence,
        source=result.source,
        complexity=result.complexity,
        breakdown=list(result.breakdown),
        progress_message=progress,
        remaining_message=remaining,
        request_id=request_id or "",
    )
