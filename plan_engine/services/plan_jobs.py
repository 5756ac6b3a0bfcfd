"""Plan generation job orchestration.

The orchestrator is the only writer of job status. Every status change is a
single conditional UPDATE so that two workers, or a worker and a client
reclaim, can never both win the same transition.
"""
from __future__ import annotations

import logging
import os
import socket
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from plan_engine.core.config import Settings, get_settings
from plan_engine.core.context import bind_job_id
from plan_engine.core.errors import (
    JobNotFoundError,
    JobOwnershipError,
    JobStateError,
    ParseError,
    PlanEngineError,
    ProviderError,
    ValidationError,
)
from plan_engine.db.models.checkin import CheckIn
from plan_engine.db.models.plan_job import PlanJob
from plan_engine.db.models.weekly_plan import WeeklyPlan
from plan_engine.db.types import utcnow
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.completion.factory import build_completion_gateway
from plan_engine.services.completion.gateway import CompletionGateway
from plan_engine.services.job_state import ACTIVE_STATUSES, JobStatus, Lease, ensure_transition
from plan_engine.services.notifications.hooks import PlanEvent, PlanEventNotifier
from plan_engine.services.plan_structure import PlanConstraints, RepairReport
from plan_engine.services.profile import ProfileSnapshot
from plan_engine.services.prompt_builder import (
    build_constraints,
    build_generation_payload,
    build_redo_payload,
    build_verification_payload,
)
from plan_engine.services.response_parser import parse_and_validate
from plan_engine.services.time_estimator import GenerationHistoryStore, profile_complexity
from plan_engine.services.trend_memory import build_trend_memory

logger = logging.getLogger(__name__)

PENDING = JobStatus.PENDING.value
PROCESSING = JobStatus.PROCESSING.value
COMPLETED = JobStatus.COMPLETED.value
FAILED = JobStatus.FAILED.value
ACTIVE = tuple(status.value for status in ACTIVE_STATUSES)
TERMINAL = (COMPLETED, FAILED)

REDO_TYPES = ("workout", "nutrition", "both")
MAX_RETRIES_MESSAGE = "Job timed out after all retries"
RESET_MESSAGE = "Processing stalled; job returned to the queue"
CANCELLED_MESSAGE = "Cancelled by user"


@dataclass(frozen=True)
class RedoOptions:
    redo: bool = False
    reason: Optional[str] = None
    redo_type: str = "both"


@dataclass
class CreateJobResult:
    status: str  # created | existing | redo_started | error
    job_id: Optional[UUID] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class RecoveryResult:
    reset: int = 0
    failed: int = 0


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class LeaseHeartbeat:
    """Background thread that renews the lease while a job runs."""

    def __init__(self, renew: Callable[[], bool], interval_seconds: float) -> None:
        self._renew = renew
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="plan-job-heartbeat", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=self._interval)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                if not self._renew():
                    logger.warning("Lease no longer held; stopping heartbeat")
                    return
            except Exception:  # pragma: no cover - background guard
                logger.exception("Lease heartbeat failed")


class PlanJobOrchestrator:
    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        gateway: Optional[CompletionGateway] = None,
        gateway_factory: Optional[Callable[[], CompletionGateway]] = None,
        verification_gateway: Optional[CompletionGateway] = None,
        telemetry: Optional[Telemetry] = None,
        notifier: Optional[PlanEventNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
        worker_id: Optional[str] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.telemetry = telemetry or Telemetry.disabled()
        self.notifier = notifier or PlanEventNotifier(self.settings, self.telemetry)
        self.clock = clock
        self.worker_id = worker_id or default_worker_id()
        self._gateway = gateway
        self._gateway_factory = gateway_factory
        self._verification_gateway = verification_gateway

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(seconds=self.settings.job_lease_seconds)

    @property
    def stuck_after(self) -> timedelta:
        return timedelta(seconds=self.settings.job_stuck_after_seconds)

    @property
    def gateway(self) -> CompletionGateway:
        """Completion gateway, built on first use so API-only processes need no provider keys."""
        if self._gateway is None:
            if self._gateway_factory is not None:
                self._gateway = self._gateway_factory()
            else:
                self._gateway = build_completion_gateway(self.settings, self.telemetry)
        return self._gateway

    @property
    def verification_gateway(self) -> CompletionGateway:
        if self._verification_gateway is None:
            if self._gateway_factory is None and self.settings.verification_provider:
                self._verification_gateway = build_completion_gateway(
                    self.settings, self.telemetry, preferred=self.settings.verification_provider
                )
            else:
                return self.gateway
        return self._verification_gateway

    # -- creation -------------------------------------------------------

    def create_job(
        self,
        db: Session,
        owner_id: UUID,
        profile: ProfileSnapshot,
        redo: Optional[RedoOptions] = None,
    ) -> CreateJobResult:
        """Insert a pending job, or return the owner's active job instead."""
        active = self.get_active_job(db, owner_id)
        redo = redo or RedoOptions()

        if not redo.redo:
            if active is not None:
                logger.info("Returning existing active job %s for user %s", active.id, owner_id)
                return CreateJobResult(status="existing", job_id=active.id)
            job = self._new_job(owner_id, profile)
            return self._insert(db, job, owner_id, "created")

        refusal, source_plan = self._check_redo(db, owner_id, redo, active)
        if refusal is not None:
            logger.info("Redo refused for user %s: %s", owner_id, refusal.error_code)
            return refusal

        today = self.clock().date()
        used = source_plan.redo_count_today if source_plan.last_redo_date == today else 0
        source_plan.redo_count_today = used + 1
        source_plan.last_redo_date = today

        if not profile.plan_regeneration_request:
            profile = profile.model_copy(update={"plan_regeneration_request": redo.reason})
        job = self._new_job(owner_id, profile)
        job.is_redo = True
        job.redo_reason = redo.reason
        job.redo_type = redo.redo_type if redo.redo_type in REDO_TYPES else "both"
        job.source_plan_id = source_plan.id
        return self._insert(db, job, owner_id, "redo_started")

    def _new_job(self, owner_id: UUID, profile: ProfileSnapshot) -> PlanJob:
        return PlanJob(
            user_id=owner_id,
            status=PENDING,
            profile_snapshot=profile.snapshot(),
            retry_count=0,
            max_retries=self.settings.job_max_retries,
            created_at=self.clock(),
        )

    def _insert(self, db: Session, job: PlanJob, owner_id: UUID, status: str) -> CreateJobResult:
        db.add(job)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent create for the same owner.
            db.rollback()
            existing = self.get_active_job(db, owner_id)
            if existing is None:
                raise
            return CreateJobResult(status="existing", job_id=existing.id)
        db.refresh(job)
        logger.info("Created plan job %s for user %s (%s)", job.id, owner_id, status)
        self.telemetry.log_metric("plan_jobs.created", 1, metadata={"status": status})
        return CreateJobResult(status=status, job_id=job.id)

    def _check_redo(
        self,
        db: Session,
        owner_id: UUID,
        redo: RedoOptions,
        active: Optional[PlanJob],
    ) -> Tuple[Optional[CreateJobResult], Optional[WeeklyPlan]]:
        if not (redo.reason or "").strip():
            return CreateJobResult("error", error_code="REDO_REASON_REQUIRED", message="A reason is required to redo a plan"), None
        latest = db.scalars(
            select(WeeklyPlan)
            .where(WeeklyPlan.user_id == owner_id, WeeklyPlan.status != "archived")
            .order_by(WeeklyPlan.created_at.desc())
            .limit(1)
        ).first()
        if latest is None:
            return CreateJobResult("error", error_code="NO_PLAN_TO_REDO", message="There is no plan to redo"), None
        if latest.status == "active":
            return CreateJobResult("error", error_code="REDO_BLOCKED_ACTIVATED", message="Plan is already activated"), None
        if active is not None or latest.status in ("pending", "generating"):
            return CreateJobResult("error", error_code="REDO_BLOCKED_GENERATING", message="A plan is still generating"), None
        today = self.clock().date()
        used = latest.redo_count_today if latest.last_redo_date == today else 0
        if used >= self.settings.max_redos_per_day:
            return (
                CreateJobResult(
                    "error",
                    error_code="REDO_LIMIT_REACHED",
                    message=f"Redo limit of {self.settings.max_redos_per_day} per day reached",
                ),
                None,
            )
        return None, latest

    # -- queue ----------------------------------------------------------

    def claim_next_pending(self, db: Session) -> Optional[PlanJob]:
        """Atomically move the oldest pending job to processing under our lease."""
        now = self.clock()
        lease = Lease.acquire(self.worker_id, self.lease_duration, now)
        ensure_transition(JobStatus.PENDING, JobStatus.PROCESSING)

        # Aliased so the subquery is not correlated to the UPDATE target.
        queued = aliased(PlanJob)
        candidate = (
            select(queued.id)
            .where(queued.status == PENDING)
            .order_by(queued.created_at, queued.id)
            .limit(1)
        )
        if db.get_bind().dialect.name == "postgresql":
            candidate = candidate.with_for_update(skip_locked=True)

        statement = (
            update(PlanJob)
            .where(PlanJob.id == candidate.scalar_subquery(), PlanJob.status == PENDING)
            .values(
                status=PROCESSING,
                started_at=now,
                worker_id=lease.owner_id,
                locked_until=lease.expires_at,
                error_code=None,
                error_message=None,
            )
            .returning(PlanJob.id)
            .execution_options(synchronize_session=False)
        )
        job_id = db.execute(statement).scalar_one_or_none()
        db.commit()
        if job_id is None:
            return None
        logger.info("Worker %s claimed plan job %s until %s", self.worker_id, job_id, lease.expires_at.isoformat())
        return db.get(PlanJob, job_id, populate_existing=True)

    def extend_lease(self, db: Session, job_id: UUID, worker_id: Optional[str] = None) -> bool:
        """Renew the lease; False when the worker no longer owns a processing job."""
        owner = worker_id or self.worker_id
        held = db.scalar(
            select(PlanJob.locked_until).where(
                PlanJob.id == job_id, PlanJob.status == PROCESSING, PlanJob.worker_id == owner
            )
        )
        if held is None:
            db.rollback()
            return False
        lease = Lease(owner, held).renew(self.lease_duration, self.clock())
        result = db.execute(
            update(PlanJob)
            .where(PlanJob.id == job_id, PlanJob.status == PROCESSING, PlanJob.worker_id == owner)
            .values(locked_until=lease.expires_at)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def process_next(self, db: Session) -> Optional[PlanJob]:
        job = self.claim_next_pending(db)
        if job is None:
            return None
        return self.run_job(db, job)

    def process_pending(self, db: Session, limit: int = 1) -> int:
        processed = 0
        for _ in range(max(limit, 1)):
            if self.process_next(db) is None:
                break
            processed += 1
        return processed

    # -- execution ------------------------------------------------------

    def run_job(self, db: Session, job: PlanJob) -> PlanJob:
        """Generate, verify and persist the plan for a job this worker has claimed."""
        if job.status != PROCESSING or job.worker_id != self.worker_id:
            raise JobStateError(f"Job {job.id} is not held by worker {self.worker_id}")

        job_id = job.id
        bind = db.get_bind()
        heartbeat = LeaseHeartbeat(lambda: self._renew_in_new_session(bind, job_id), self.settings.job_heartbeat_seconds)
        started = perf_counter()
        with bind_job_id(job_id), self.telemetry.trace(
            "plan_job.run",
            metadata={"job_id": str(job_id), "retry_count": job.retry_count, "is_redo": job.is_redo},
            user_id=str(job.user_id),
        ):
            heartbeat.start()
            try:
                days, report = self._generate(db, job)
                written = self._complete(db, job_id, days, report)
                outcome = True
            except PlanEngineError as exc:
                logger.warning("Plan job %s failed: %s (%s)", job_id, exc.error_code, exc.message)
                if exc.detail:
                    logger.debug("Failure detail for job %s: %s", job_id, exc.detail)
                written = self._fail(db, job_id, exc.error_code, exc.message)
                outcome = False
            except Exception:
                logger.exception("Unexpected error while generating or saving plan job %s", job_id)
                written = self._fail(db, job_id, "UNKNOWN", "Unexpected error during plan generation")
                outcome = False
            finally:
                heartbeat.stop()

            job = db.get(PlanJob, job_id, populate_existing=True)
            if written:
                self._after_terminal(db, job, perf_counter() - started, succeeded=outcome)
            else:
                logger.warning("Plan job %s changed owner before it finished; result discarded", job_id)
        return job

    def _renew_in_new_session(self, bind: Any, job_id: UUID) -> bool:
        with Session(bind=bind) as session:
            return self.extend_lease(session, job_id)

    def _generate(self, db: Session, job: PlanJob) -> Tuple[Dict[str, Any], RepairReport]:
        try:
            profile = ProfileSnapshot.model_validate(job.profile_snapshot or {})
        except PydanticValidationError as exc:
            raise ValidationError(
                "Profile snapshot is invalid",
                issues=[".".join(str(p) for p in error["loc"]) for error in exc.errors()],
            ) from exc

        checkins = db.scalars(
            select(CheckIn)
            .where(CheckIn.user_id == job.user_id)
            .order_by(CheckIn.date.desc())
            .limit(self.settings.trend_checkin_window)
        ).all()
        memory = build_trend_memory(checkins, goal=profile.goal, min_history=self.settings.trend_min_history)
        constraints = build_constraints(profile)
        logger.info(
            "Generating plan (kcal=%s, protein=%s, memory=%s)",
            constraints.total_kcal,
            constraints.protein_g,
            "on" if memory else "off",
        )

        base_days = self._redo_base(db, job)
        redo_type = job.redo_type or "both"
        if base_days:
            logger.info("Redoing %s sections of plan %s", redo_type, job.source_plan_id)
            payload = build_redo_payload(
                profile,
                base_days,
                redo_type,
                job.redo_reason,
                memory,
                temperature=self.settings.completion_temperature,
                max_tokens=self.settings.completion_max_tokens,
            )
        else:
            payload = build_generation_payload(
                profile,
                memory,
                temperature=self.settings.completion_temperature,
                max_tokens=self.settings.completion_max_tokens,
            )
        raw = self.gateway.complete(payload)
        days, report = parse_and_validate(raw, constraints, base_days=base_days, redo_type=redo_type)

        if self.settings.verification_enabled:
            days, report = self._verify(profile, constraints, days, report, redo_type if base_days else None)
        else:
            report.verification = "disabled"
        return days, report

    def _redo_base(self, db: Session, job: PlanJob) -> Optional[Dict[str, Any]]:
        """Days of the plan being redone, or None for a fresh generation."""
        if not (job.is_redo and job.source_plan_id):
            return None
        source = db.get(WeeklyPlan, job.source_plan_id)
        if source is None or not isinstance(source.days, dict) or not source.days:
            logger.info("Source plan %s has no days; generating a full week", job.source_plan_id)
            return None
        return source.days

    def _verify(
        self,
        profile: ProfileSnapshot,
        constraints: PlanConstraints,
        days: Dict[str, Any],
        report: RepairReport,
        redo_type: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], RepairReport]:
        payload = build_verification_payload(
            profile,
            days,
            report.semantic_issues,
            temperature=self.settings.completion_temperature,
            max_tokens=self.settings.completion_max_tokens,
        )
        try:
            raw = self.verification_gateway.complete(payload)
            # A redo keeps the untouched sections even if the reviewer rewrote them.
            verified_days, verified_report = parse_and_validate(
                raw, constraints, base_days=days if redo_type else None, redo_type=redo_type or "both"
            )
        except (ProviderError, ParseError, ValidationError) as exc:
            logger.warning("Verification stage failed (%s); keeping the generated plan", exc.error_code)
            report.verification = f"skipped:{exc.error_code}"
            return days, report

        verified_report.structural_fixes = report.structural_fixes + verified_report.structural_fixes
        verified_report.verification = "verified"
        return verified_days, verified_report

    def _complete(self, db: Session, job_id: UUID, days: Dict[str, Any], report: RepairReport) -> bool:
        """Persist the plan and flip the job to completed in one transaction."""
        ensure_transition(JobStatus.PROCESSING, JobStatus.COMPLETED)
        job = db.get(PlanJob, job_id, populate_existing=True)
        plan = WeeklyPlan(
            user_id=job.user_id,
            days=days,
            status="generated",
            is_locked=False,
            generation_job_id=job_id,
            generation_notes=report.to_notes(),
            created_at=self.clock(),
        )
        db.add(plan)
        db.flush()

        result = db.execute(
            update(PlanJob)
            .where(PlanJob.id == job_id, PlanJob.status == PROCESSING, PlanJob.worker_id == self.worker_id)
            .values(
                status=COMPLETED,
                completed_at=self.clock(),
                result_plan_id=plan.id,
                locked_until=None,
                error_code=None,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return False

        if job.is_redo and job.source_plan_id:
            source = db.get(WeeklyPlan, job.source_plan_id)
            if source is not None:
                plan.redo_count_today = source.redo_count_today
                plan.last_redo_date = source.last_redo_date
                source.status = "archived"
        db.commit()

        self.telemetry.log_metric("parser.strategy", 1, metadata={"strategy": report.parse_strategy})
        self.telemetry.log_metric("plan.structural_repairs", len(report.structural_fixes))
        return True

    def _fail(self, db: Session, job_id: UUID, error_code: str, message: str) -> bool:
        ensure_transition(JobStatus.PROCESSING, JobStatus.FAILED)
        db.rollback()
        result = db.execute(
            update(PlanJob)
            .where(PlanJob.id == job_id, PlanJob.status == PROCESSING, PlanJob.worker_id == self.worker_id)
            .values(
                status=FAILED,
                completed_at=self.clock(),
                locked_until=None,
                error_code=error_code,
                error_message=message[:500],
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def _after_terminal(self, db: Session, job: PlanJob, duration_seconds: float, *, succeeded: bool) -> None:
        try:
            complexity = profile_complexity(ProfileSnapshot.model_validate(job.profile_snapshot or {}))
        except PydanticValidationError:
            complexity = 0
        GenerationHistoryStore(db, self.settings.estimate_history_limit).append(
            duration_seconds=round(duration_seconds, 3),
            complexity_score=complexity,
            success=succeeded,
            user_id=job.user_id,
        )
        db.commit()

        self.telemetry.log_metric(
            "plan_jobs.completed" if succeeded else "plan_jobs.failed",
            1,
            metadata={"error_code": job.error_code, "duration_seconds": round(duration_seconds, 1)},
        )
        event = PlanEvent(
            type="plan_ready" if succeeded else "plan_error",
            owner_id=job.user_id,
            job_id=job.id,
            plan_id=job.result_plan_id,
            error_code=job.error_code,
        )
        try:
            self.notifier.emit(event)
        except Exception:  # pragma: no cover - notifications never fail a job
            logger.exception("Failed to emit %s for job %s", event.type, job.id)

    # -- recovery -------------------------------------------------------

    def is_stuck(self, job: PlanJob, now: Optional[datetime] = None, *, lease_only: bool = False) -> bool:
        """A processing job is stuck once its lease lapses.

        Client reclaims also treat a job running longer than ``stuck_after`` as
        stuck; the background sweep passes ``lease_only`` so a job whose lease
        is still being renewed is never taken away from a live worker.
        """
        if job.status != PROCESSING:
            return False
        now = now or self.clock()
        if job.locked_until is None or Lease(job.worker_id or "", job.locked_until).is_expired(now):
            return True
        if lease_only:
            return False
        return job.started_at is not None and now - job.started_at > self.stuck_after

    def reclaim_stuck_job(self, db: Session, job_id: UUID, owner_id: Optional[UUID] = None) -> PlanJob:
        """Return a stuck job to the queue, or fail it once retries are exhausted."""
        job = self._load(db, job_id, owner_id)
        if not self.is_stuck(job):
            raise JobStateError(f"Job {job_id} is {job.status} and not stuck")
        if not self._reclaim(db, job):
            raise JobStateError(f"Job {job_id} changed state while being reclaimed")
        return db.get(PlanJob, job_id, populate_existing=True)

    def _reclaim(self, db: Session, job: PlanJob) -> bool:
        now = self.clock()
        exhausted = job.retry_count >= job.max_retries
        target = JobStatus.FAILED if exhausted else JobStatus.PENDING
        ensure_transition(job.status, target)

        if exhausted:
            values = dict(
                status=FAILED,
                completed_at=now,
                locked_until=None,
                error_code="MAX_RETRIES_EXCEEDED",
                error_message=MAX_RETRIES_MESSAGE,
            )
        else:
            values = dict(
                status=PENDING,
                retry_count=job.retry_count + 1,
                started_at=None,
                worker_id=None,
                locked_until=None,
                error_code="CLIENT_RESET",
                error_message=RESET_MESSAGE,
            )
        result = db.execute(
            update(PlanJob)
            .where(
                PlanJob.id == job.id,
                PlanJob.status == PROCESSING,
                PlanJob.retry_count == job.retry_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return False

        logger.info("Reclaimed stuck job %s -> %s (retry %s/%s)", job.id, target.value, job.retry_count, job.max_retries)
        self.telemetry.log_metric("plan_jobs.reclaimed", 1, metadata={"outcome": target.value})
        if exhausted:
            refreshed = db.get(PlanJob, job.id, populate_existing=True)
            started = refreshed.started_at or refreshed.created_at
            self._after_terminal(db, refreshed, (now - started).total_seconds(), succeeded=False)
        return True

    def recover_stuck_jobs(self, db: Session) -> RecoveryResult:
        """Requeue processing jobs whose lease has lapsed (system actor, no ownership check)."""
        now = self.clock()
        candidates = db.scalars(
            select(PlanJob).where(PlanJob.status == PROCESSING).order_by(PlanJob.started_at)
        ).all()
        result = RecoveryResult()
        for job in candidates:
            if not self.is_stuck(job, now, lease_only=True):
                continue
            exhausted = job.retry_count >= job.max_retries
            if self._reclaim(db, job):
                if exhausted:
                    result.failed += 1
                else:
                    result.reset += 1
        if result.reset or result.failed:
            logger.info("Stuck job sweep: %s reset, %s failed", result.reset, result.failed)
        return result

    def cancel_job(self, db: Session, job_id: UUID, owner_id: Optional[UUID] = None) -> PlanJob:
        job = self._load(db, job_id, owner_id)
        if job.status == COMPLETED:
            raise JobStateError(f"Job {job_id} already completed")
        if job.status == FAILED:
            return job

        now = self.clock()
        result = db.execute(
            update(PlanJob)
            .where(PlanJob.id == job_id, PlanJob.status.in_(ACTIVE))
            .values(
                status=FAILED,
                completed_at=now,
                locked_until=None,
                error_code="USER_CANCELLED",
                error_message=CANCELLED_MESSAGE,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        job = db.get(PlanJob, job_id, populate_existing=True)
        if result.rowcount != 1:
            if job.status == COMPLETED:
                raise JobStateError(f"Job {job_id} already completed")
            return job

        logger.info("Cancelled plan job %s", job_id)
        started = job.started_at or job.created_at
        self._after_terminal(db, job, (now - started).total_seconds(), succeeded=False)
        return job

    # -- reads and housekeeping -----------------------------------------

    def _load(self, db: Session, job_id: UUID, owner_id: Optional[UUID]) -> PlanJob:
        job = db.get(PlanJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if owner_id is not None and job.user_id != owner_id:
            raise JobOwnershipError(f"Job {job_id} does not belong to this user")
        return job

    def get_job_status(self, db: Session, job_id: UUID) -> PlanJob:
        return self._load(db, job_id, None)

    def get_active_job(self, db: Session, owner_id: UUID) -> Optional[PlanJob]:
        return db.scalars(
            select(PlanJob)
            .where(PlanJob.user_id == owner_id, PlanJob.status.in_(ACTIVE))
            .order_by(PlanJob.created_at.desc())
            .limit(1)
        ).first()

    def cleanup_old_jobs(self, db: Session, older_than_days: Optional[int] = None) -> int:
        days = older_than_days if older_than_days is not None else self.settings.job_retention_days
        cutoff = self.clock() - timedelta(days=days)
        result = db.execute(
            delete(PlanJob)
            .where(PlanJob.status.in_(TERMINAL), PlanJob.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            logger.info("Deleted %s finished plan jobs older than %s days", result.rowcount, days)
        return result.rowcount

