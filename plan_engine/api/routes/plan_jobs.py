"""Plan generation job endpoints."""
from __future__ import annotations

from time import perf_counter
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from plan_engine.api.deps import get_orchestrator
from plan_engine.api.schemas.plan_jobs import (
    ActivePlanJobResponse,
    OwnerRequest,
    PlanJobCreateRequest,
    PlanJobCreateResponse,
    PlanJobStatusResponse,
    ProcessNextResponse,
)
from plan_engine.core.errors import JobNotFoundError, JobOwnershipError, JobStateError, PlanEngineError
from plan_engine.db.deps import get_db
from plan_engine.db.models.plan_job import PlanJob
from plan_engine.services.plan_jobs import PlanJobOrchestrator, RedoOptions

router = APIRouter()


def _to_http(exc: PlanEngineError) -> HTTPException:
    if isinstance(exc, JobNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, JobOwnershipError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, JobStateError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"error_code": exc.error_code, "message": exc.message})


def _serialize(orchestrator: PlanJobOrchestrator, job: PlanJob) -> PlanJobStatusResponse:
    payload = PlanJobStatusResponse.model_validate(job)
    payload.is_stuck = orchestrator.is_stuck(job)
    return payload


@router.post("/plan-jobs", response_model=PlanJobCreateResponse, tags=["plan-jobs"])
def create_plan_job(
    request: Request,
    payload: PlanJobCreateRequest,
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> PlanJobCreateResponse:
    request_id = getattr(request.state, "request_id", None)
    redo = RedoOptions(**payload.redo.model_dump()) if payload.redo else None
    metadata = {"owner_id": str(payload.owner_id), "redo": bool(redo and redo.redo), "request_id": request_id}
    start = perf_counter()

    with orchestrator.telemetry.trace("plan_jobs.create", metadata=metadata, user_id=str(payload.owner_id)):
        result = orchestrator.create_job(db, payload.owner_id, payload.profile, redo)

    orchestrator.telemetry.log_metric(
        "plan_jobs.create.latency_ms",
        (perf_counter() - start) * 1000,
        metadata={"status": result.status},
    )
    return PlanJobCreateResponse(
        status=result.status,
        job_id=result.job_id,
        error_code=result.error_code,
        message=result.message,
        request_id=request_id or "",
    )


@router.get("/plan-jobs/active", response_model=ActivePlanJobResponse, tags=["plan-jobs"])
def get_active_plan_job(
    request: Request,
    owner_id: UUID = Query(..., description="Owner of the job"),
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> ActivePlanJobResponse:
    request_id = getattr(request.state, "request_id", None)
    job = orchestrator.get_active_job(db, owner_id)
    return ActivePlanJobResponse(
        job=_serialize(orchestrator, job) if job else None,
        request_id=request_id or "",
    )


@router.post("/plan-jobs/process-next", response_model=ProcessNextResponse, tags=["plan-jobs"])
def process_next_plan_job(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> ProcessNextResponse:
    """One-shot trigger: claim the oldest pending job and run it inline."""
    request_id = getattr(request.state, "request_id", None)
    with orchestrator.telemetry.trace("plan_jobs.process_next", metadata={"request_id": request_id}):
        job = orchestrator.process_next(db)
    return ProcessNextResponse(
        processed=job is not None,
        job=_serialize(orchestrator, job) if job else None,
        request_id=request_id or "",
    )


@router.get("/plan-jobs/{job_id}", response_model=PlanJobStatusResponse, tags=["plan-jobs"])
def get_plan_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> PlanJobStatusResponse:
    try:
        job = orchestrator.get_job_status(db, job_id)
    except PlanEngineError as exc:
        raise _to_http(exc) from exc
    return _serialize(orchestrator, job)


@router.post("/plan-jobs/{job_id}/reclaim", response_model=PlanJobStatusResponse, tags=["plan-jobs"])
def reclaim_plan_job(
    job_id: UUID,
    payload: OwnerRequest,
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> PlanJobStatusResponse:
    with orchestrator.telemetry.trace(
        "plan_jobs.reclaim", metadata={"job_id": str(job_id)}, user_id=str(payload.owner_id)
    ):
        try:
            job = orchestrator.reclaim_stuck_job(db, job_id, payload.owner_id)
        except PlanEngineError as exc:
            raise _to_http(exc) from exc
    return _serialize(orchestrator, job)


@router.post("/plan-jobs/{job_id}/cancel", response_model=PlanJobStatusResponse, tags=["plan-jobs"])
def cancel_plan_job(
    job_id: UUID,
    payload: OwnerRequest,
    db: Session = Depends(get_db),
    orchestrator: PlanJobOrchestrator = Depends(get_orchestrator),
) -> PlanJobStatusResponse:
    with orchestrator.telemetry.trace(
        "plan_jobs.cancel", metadata={"job_id": str(job_id)}, user_id=str(payload.owner_id)
    ):
        try:
            job = orchestrator.cancel_job(db, job_id, payload.owner_id)
        except PlanEngineError as exc:
            raise _to_http(exc) from exc
    return _serialize(orchestrator, job)
