from __future__ import annotations

import json
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import List
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plan_engine.core.config import Settings
from plan_engine.core.errors import JobNotFoundError, JobOwnershipError, JobStateError, ProviderError
from plan_engine.db.models.checkin import CheckIn
from plan_engine.db.models.generation_run import GenerationRun
from plan_engine.db.models.plan_job import PlanJob
from plan_engine.db.models.weekly_plan import WeeklyPlan
from plan_engine.services.completion.base import CompletionProvider, PromptPayload
from plan_engine.services.completion.gateway import CompletionGateway
from plan_engine.services.notifications.base import NotificationResult
from plan_engine.services.plan_jobs import LeaseHeartbeat, PlanJobOrchestrator, RedoOptions
from plan_engine.services.plan_structure import DAY_KEYS
from plan_engine.services.profile import ProfileSnapshot

START = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
TABLES = (WeeklyPlan, PlanJob, CheckIn, GenerationRun)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class ScriptedGateway:
    """Returns (or raises) the queued outcomes in order and records each payload."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.payloads: List[PromptPayload] = []

    def complete(self, payload: PromptPayload) -> str:
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TimeoutProvider(CompletionProvider):
    def __init__(self, name: str, timeout_seconds: float) -> None:
        self.name = name
        self.timeout_seconds = timeout_seconds

    def complete(self, payload: PromptPayload) -> str:
        raise self._error("timeout", f"{self.name} timed out")


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def emit(self, event):
        self.events.append(event)
        return NotificationResult(status="noop", reason="test")


def _day(kcal: int = 2000, food: str = "Oats") -> dict:
    return {
        "workout": {"focus": ["Push"], "blocks": [{"name": "Main", "items": [{"exercise": "Bench Press", "sets": 3}]}]},
        "nutrition": {
            "total_kcal": kcal,
            "protein_g": 120,
            "meals": [{"name": "Breakfast", "items": [{"food": food, "qty": "1 bowl"}]}],
            "hydration_l": 3,
        },
        "recovery": {"mobility": ["Stretch"], "sleep": ["8h"]},
        "reason": "Test day",
    }


def _week_json(**kwargs) -> str:
    return json.dumps({"days": {day: _day(**kwargs) for day in DAY_KEYS}})


def _profile(**kwargs) -> ProfileSnapshot:
    base = dict(age=30, sex="Male", height=180, weight=80, activity_level="Moderately Active")
    base.update(kwargs)
    return ProfileSnapshot(**base)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    for model in TABLES:
        model.__table__.create(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def settings():
    return Settings(_env_file=None, verification_enabled=False, notifications_enabled=False)


def _orchestrator(settings, clock, gateway=None, worker_id="worker-a", notifier=None):
    return PlanJobOrchestrator(
        settings=settings,
        gateway=gateway or ScriptedGateway(),
        clock=clock,
        worker_id=worker_id,
        notifier=notifier or RecordingNotifier(),
    )


def _seed_plan(session, owner_id, **kwargs):
    plan = WeeklyPlan(user_id=owner_id, days=kwargs.pop("days", {}), status=kwargs.pop("status", "generated"), created_at=START, **kwargs)
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan


def test_create_job_dedupes_active_job(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    owner_id = uuid4()

    first = orchestrator.create_job(session, owner_id, _profile())
    second = orchestrator.create_job(session, owner_id, _profile(goal="WEIGHT_LOSS"))

    assert first.status == "created"
    assert second.status == "existing"
    assert second.job_id == first.job_id
    job = session.get(PlanJob, first.job_id)
    assert job.status == "pending"
    assert job.max_retries == 3
    assert job.profile_snapshot["weight"] == 80
    session.close()


def test_create_job_returns_existing_when_insert_races(session_factory, settings, clock, monkeypatch):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    owner_id = uuid4()
    first = orchestrator.create_job(session, owner_id, _profile())

    real_lookup = orchestrator.get_active_job
    lookups = []

    def stale_lookup(db, owner):
        lookups.append(owner)
        return None if len(lookups) == 1 else real_lookup(db, owner)

    monkeypatch.setattr(orchestrator, "get_active_job", stale_lookup)
    result = orchestrator.create_job(session, owner_id, _profile())

    assert result.status == "existing"
    assert result.job_id == first.job_id
    assert len(session.scalars(select(PlanJob)).all()) == 1
    session.close()


def test_redo_policy_refusals(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    owner_id = uuid4()

    missing_reason = orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="  "))
    assert missing_reason.error_code == "REDO_REASON_REQUIRED"

    no_plan = orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="Too hard"))
    assert no_plan.status == "error"
    assert no_plan.error_code == "NO_PLAN_TO_REDO"

    plan = _seed_plan(session, owner_id, status="active")
    activated = orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="Too hard"))
    assert activated.error_code == "REDO_BLOCKED_ACTIVATED"

    plan.status = "generated"
    plan.redo_count_today = 2
    plan.last_redo_date = clock().date()
    session.commit()
    limited = orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="Too hard"))
    assert limited.error_code == "REDO_LIMIT_REACHED"

    assert session.scalars(select(PlanJob)).all() == []
    session.close()


def test_redo_started_counts_and_blocks_while_generating(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    owner_id = uuid4()
    plan = _seed_plan(session, owner_id, redo_count_today=2, last_redo_date=date(2026, 9, 30))

    result = orchestrator.create_job(
        session, owner_id, _profile(), RedoOptions(redo=True, reason="More cardio", redo_type="workout")
    )

    assert result.status == "redo_started"
    session.refresh(plan)
    assert plan.redo_count_today == 1
    assert plan.last_redo_date == clock().date()
    job = session.get(PlanJob, result.job_id)
    assert job.is_redo is True
    assert job.redo_type == "workout"
    assert job.source_plan_id == plan.id
    assert job.profile_snapshot["planRegenerationRequest"] == "More cardio"

    again = orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="Again"))
    assert again.error_code == "REDO_BLOCKED_GENERATING"
    session.close()


def test_claim_next_pending_is_fifo_and_sets_lease(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    first = orchestrator.create_job(session, uuid4(), _profile())
    clock.advance(seconds=5)
    orchestrator.create_job(session, uuid4(), _profile())

    claimed = orchestrator.claim_next_pending(session)

    assert claimed.id == first.job_id
    assert claimed.status == "processing"
    assert claimed.worker_id == "worker-a"
    assert claimed.started_at == clock()
    assert claimed.locked_until == clock() + timedelta(seconds=180)

    assert orchestrator.claim_next_pending(session).status == "processing"
    assert orchestrator.claim_next_pending(session) is None
    session.close()


@pytest.fixture()
def file_session_factory(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'queue.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_autocommit(conn, record):  # pragma: no cover
        conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):  # pragma: no cover
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    for model in TABLES:
        model.__table__.create(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


def test_single_pending_job_goes_to_exactly_one_worker(file_session_factory):
    settings = Settings(_env_file=None)
    setup = file_session_factory()
    job_id = PlanJobOrchestrator(settings=settings, gateway=ScriptedGateway()).create_job(
        setup, uuid4(), _profile()
    ).job_id
    setup.close()

    results = [None] * 8
    barrier = threading.Barrier(len(results))

    def worker(index: int) -> None:
        orchestrator = PlanJobOrchestrator(settings=settings, gateway=ScriptedGateway(), worker_id=f"w{index}")
        session = file_session_factory()
        try:
            barrier.wait()
            job = orchestrator.claim_next_pending(session)
            results[index] = job.id if job else None
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(len(results))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert [result for result in results if result is not None] == [job_id]


def test_concurrent_claims_never_share_a_job(file_session_factory):
    factory = file_session_factory
    settings = Settings(_env_file=None)

    setup = factory()
    seeder = PlanJobOrchestrator(settings=settings, gateway=ScriptedGateway(), worker_id="seeder")
    for _ in range(12):
        seeder.create_job(setup, uuid4(), _profile())
    setup.close()

    claimed = []
    lock = threading.Lock()

    def worker(index: int) -> None:
        orchestrator = PlanJobOrchestrator(settings=settings, gateway=ScriptedGateway(), worker_id=f"w{index}")
        while True:
            session = factory()
            try:
                job = orchestrator.claim_next_pending(session)
                if job is None:
                    return
                with lock:
                    claimed.append((job.id, job.worker_id))
            finally:
                session.close()

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ids = [job_id for job_id, _ in claimed]
    assert len(ids) == 12
    assert len(set(ids)) == 12

    check = factory()
    rows = check.scalars(select(PlanJob)).all()
    assert all(row.status == "processing" for row in rows)
    assert {row.id: row.worker_id for row in rows} == dict(claimed)
    check.close()


def test_run_job_persists_plan_and_completes(session_factory, settings, clock):
    session = session_factory()
    notifier = RecordingNotifier()
    gateway = ScriptedGateway(_week_json())
    orchestrator = _orchestrator(settings, clock, gateway=gateway, notifier=notifier)
    owner_id = uuid4()
    for offset in range(4):
        session.add(CheckIn(user_id=owner_id, date=date(2026, 9, 26) + timedelta(days=offset), sleep_hrs=8, energy=7))
    session.commit()
    orchestrator.create_job(session, owner_id, _profile())
    claimed = orchestrator.claim_next_pending(session)

    job = orchestrator.run_job(session, claimed)

    assert job.status == "completed"
    assert job.error_code is None
    assert job.locked_until is None
    plan = session.get(WeeklyPlan, job.result_plan_id)
    assert plan.generation_job_id == job.id
    assert list(plan.days) == list(DAY_KEYS)
    assert plan.days["friday"]["nutrition"]["total_kcal"] == 2759
    assert plan.generation_notes["parse_strategy"] == "strict"
    assert plan.generation_notes["verification"] == "disabled"
    assert "monday.nutrition.total_kcal: 2000 -> 2759" in plan.generation_notes["structural_fixes"]

    assert [payload.stage for payload in gateway.payloads] == ["generation"]
    assert "TREND MEMORY" in gateway.payloads[0].system
    assert [event.type for event in notifier.events] == ["plan_ready"]
    assert notifier.events[0].plan_id == plan.id
    runs = session.scalars(select(GenerationRun)).all()
    assert len(runs) == 1 and runs[0].success is True
    session.close()


def test_run_job_with_verification_uses_verified_plan(session_factory, clock):
    settings = Settings(_env_file=None, verification_enabled=True, notifications_enabled=False)
    session = session_factory()
    verified = json.dumps(
        {"verified": False, "issues": ["meat"], "fixes": ["swap"], "plan": {"days": {d: _day(food="Tofu") for d in DAY_KEYS}}}
    )
    gateway = ScriptedGateway(_week_json(food="Chicken curry"), verified)
    orchestrator = _orchestrator(settings, clock, gateway=gateway)
    orchestrator.create_job(session, uuid4(), _profile(dietary_prefs=["Vegetarian"]))

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert job.status == "completed"
    assert [payload.stage for payload in gateway.payloads] == ["generation", "verification"]
    assert "chicken" in gateway.payloads[1].system
    plan = session.get(WeeklyPlan, job.result_plan_id)
    assert plan.days["monday"]["nutrition"]["meals"][0]["items"][0]["food"] == "Tofu"
    assert plan.generation_notes["verification"] == "verified"
    assert plan.generation_notes["semantic_issues"] == []
    session.close()


def test_failed_verification_keeps_generated_plan(session_factory, clock):
    settings = Settings(_env_file=None, verification_enabled=True, notifications_enabled=False)
    session = session_factory()
    gateway = ScriptedGateway(_week_json(), ProviderError("timeout", "gemini", "gemini timed out"))
    orchestrator = _orchestrator(settings, clock, gateway=gateway)
    orchestrator.create_job(session, uuid4(), _profile())

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert job.status == "completed"
    plan = session.get(WeeklyPlan, job.result_plan_id)
    assert plan.generation_notes["verification"] == "skipped:AI_TIMEOUT"
    session.close()


def test_all_providers_timing_out_fails_job(session_factory, settings, clock):
    session = session_factory()
    notifier = RecordingNotifier()
    gateway = CompletionGateway(
        [TimeoutProvider("deepseek", 600), TimeoutProvider("gemini", 60), TimeoutProvider("toolkit", 45)]
    )
    orchestrator = _orchestrator(settings, clock, gateway=gateway, notifier=notifier)
    owner_id = uuid4()
    orchestrator.create_job(session, owner_id, _profile())

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert job.status == "failed"
    assert job.error_code == "AI_TIMEOUT"
    assert job.result_plan_id is None
    assert job.completed_at == clock()
    assert session.scalars(select(WeeklyPlan)).all() == []
    assert [(event.type, event.error_code) for event in notifier.events] == [("plan_error", "AI_TIMEOUT")]
    runs = session.scalars(select(GenerationRun)).all()
    assert len(runs) == 1 and runs[0].success is False
    session.close()


def test_unparseable_output_fails_job(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway("I'm sorry, I can't do that."))
    orchestrator.create_job(session, uuid4(), _profile())

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert job.status == "failed"
    assert job.error_code == "PARSE_FAILED"
    session.close()


def test_run_job_requires_lease_held_by_worker(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    result = orchestrator.create_job(session, uuid4(), _profile())
    job = session.get(PlanJob, result.job_id)

    with pytest.raises(JobStateError):
        orchestrator.run_job(session, job)
    session.close()


def test_result_discarded_after_losing_the_lease(session_factory, settings, clock):
    session = session_factory(expire_on_commit=False)
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway(_week_json()))
    orchestrator.create_job(session, uuid4(), _profile())
    claimed = orchestrator.claim_next_pending(session)

    # Another worker took the job over after a reclaim.
    session.execute(
        update(PlanJob).where(PlanJob.id == claimed.id).values(worker_id="worker-b").execution_options(
            synchronize_session=False
        )
    )
    session.commit()

    job = orchestrator.run_job(session, claimed)

    assert job.status == "processing"
    assert job.worker_id == "worker-b"
    assert job.result_plan_id is None
    assert session.scalars(select(WeeklyPlan)).all() == []
    session.close()


def test_is_stuck_rules(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    orchestrator.create_job(session, uuid4(), _profile())
    job = orchestrator.claim_next_pending(session)

    assert orchestrator.is_stuck(job) is False
    clock.advance(seconds=181)
    assert orchestrator.is_stuck(job) is True

    assert orchestrator.extend_lease(session, job.id) is True
    session.refresh(job)
    assert orchestrator.is_stuck(job) is False
    clock.advance(seconds=120)
    assert orchestrator.extend_lease(session, job.id) is True
    session.refresh(job)
    # Lease is valid but the job started more than five minutes ago.
    assert orchestrator.is_stuck(job) is True
    assert orchestrator.is_stuck(job, lease_only=True) is False

    assert orchestrator.extend_lease(session, job.id, worker_id="someone-else") is False
    session.close()


def test_reclaim_resets_then_fails_at_max_retries(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    owner_id = uuid4()
    result = orchestrator.create_job(session, owner_id, _profile())
    job = orchestrator.claim_next_pending(session)
    job.retry_count = 2
    session.commit()

    with pytest.raises(JobStateError):
        orchestrator.reclaim_stuck_job(session, job.id, owner_id)

    clock.advance(seconds=200)
    reset = orchestrator.reclaim_stuck_job(session, job.id, owner_id)
    assert reset.status == "pending"
    assert reset.retry_count == 3
    assert reset.error_code == "CLIENT_RESET"
    assert reset.worker_id is None
    assert reset.started_at is None
    assert reset.locked_until is None

    claimed = orchestrator.claim_next_pending(session)
    assert claimed.id == result.job_id
    assert claimed.error_code is None
    clock.advance(seconds=200)
    failed = orchestrator.reclaim_stuck_job(session, job.id, owner_id)
    assert failed.status == "failed"
    assert failed.retry_count == 3
    assert failed.error_code == "MAX_RETRIES_EXCEEDED"
    assert failed.error_message == "Job timed out after all retries"
    session.close()


def test_reclaim_checks_existence_and_ownership(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway(_week_json()))
    owner_id = uuid4()
    orchestrator.create_job(session, owner_id, _profile())
    job = orchestrator.claim_next_pending(session)

    with pytest.raises(JobNotFoundError):
        orchestrator.reclaim_stuck_job(session, uuid4(), owner_id)
    clock.advance(seconds=400)
    with pytest.raises(JobOwnershipError):
        orchestrator.reclaim_stuck_job(session, job.id, uuid4())

    clock.now = START
    orchestrator.run_job(session, job)
    clock.advance(seconds=400)
    with pytest.raises(JobStateError):
        orchestrator.reclaim_stuck_job(session, job.id, owner_id)
    assert session.get(PlanJob, job.id).status == "completed"
    session.close()


def test_recover_stuck_jobs_sweep(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    for _ in range(3):
        orchestrator.create_job(session, uuid4(), _profile())
        clock.advance(seconds=1)
    jobs = [orchestrator.claim_next_pending(session) for _ in range(3)]
    jobs[1].retry_count = 3
    session.commit()
    clock.advance(seconds=100)
    assert orchestrator.extend_lease(session, jobs[2].id) is True

    clock.advance(seconds=100)
    result = orchestrator.recover_stuck_jobs(session)

    assert (result.reset, result.failed) == (1, 1)
    statuses = [session.get(PlanJob, job.id).status for job in jobs]
    assert statuses == ["pending", "failed", "processing"]
    session.close()


def test_sweep_leaves_long_running_job_with_live_lease(session_factory, settings, clock):
    session = session_factory()
    worker = _orchestrator(settings, clock)
    sweeper = _orchestrator(settings, clock, worker_id="sweeper")
    worker.create_job(session, uuid4(), _profile())
    job = worker.claim_next_pending(session)

    for _ in range(11):
        clock.advance(seconds=30)
        assert worker.extend_lease(session, job.id) is True

    result = sweeper.recover_stuck_jobs(session)

    assert (result.reset, result.failed) == (0, 0)
    session.refresh(job)
    assert job.status == "processing"
    assert job.worker_id == "worker-a"
    assert job.retry_count == 0
    # A client may still reclaim it on elapsed time alone.
    assert sweeper.is_stuck(job) is True
    session.close()


def test_error_while_saving_plan_fails_job(session_factory, settings, clock, monkeypatch):
    session = session_factory()
    notifier = RecordingNotifier()
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway(_week_json()), notifier=notifier)
    orchestrator.create_job(session, uuid4(), _profile())
    claimed = orchestrator.claim_next_pending(session)

    def broken_complete(*args, **kwargs):
        raise OperationalError("INSERT INTO weekly_base_plans", {}, Exception("disk I/O error"))

    monkeypatch.setattr(orchestrator, "_complete", broken_complete)
    job = orchestrator.run_job(session, claimed)

    assert job.status == "failed"
    assert job.error_code == "UNKNOWN"
    assert job.locked_until is None
    assert session.scalars(select(WeeklyPlan)).all() == []
    assert [event.type for event in notifier.events] == ["plan_error"]
    session.close()


def test_cancel_job(session_factory, settings, clock):
    session = session_factory()
    notifier = RecordingNotifier()
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway(_week_json()), notifier=notifier)
    owner_id = uuid4()
    pending = orchestrator.create_job(session, owner_id, _profile())

    with pytest.raises(JobOwnershipError):
        orchestrator.cancel_job(session, pending.job_id, uuid4())

    cancelled = orchestrator.cancel_job(session, pending.job_id, owner_id)
    assert cancelled.status == "failed"
    assert cancelled.error_code == "USER_CANCELLED"
    assert cancelled.error_message == "Cancelled by user"
    assert orchestrator.cancel_job(session, pending.job_id, owner_id).status == "failed"
    assert [event.type for event in notifier.events] == ["plan_error"]

    created = orchestrator.create_job(session, owner_id, _profile())
    assert created.status == "created"
    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))
    with pytest.raises(JobStateError):
        orchestrator.cancel_job(session, job.id, owner_id)
    session.close()


def test_redo_completion_archives_source_plan(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock, gateway=ScriptedGateway(_week_json()))
    owner_id = uuid4()
    source = _seed_plan(session, owner_id)
    orchestrator.create_job(session, owner_id, _profile(), RedoOptions(redo=True, reason="Less volume"))

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    session.refresh(source)
    new_plan = session.get(WeeklyPlan, job.result_plan_id)
    assert source.status == "archived"
    assert new_plan.status == "generated"
    assert new_plan.redo_count_today == 1
    assert new_plan.last_redo_date == clock().date()
    session.close()


def _redo_source_days() -> dict:
    day = _day(food="Lentil curry")
    day["workout"]["blocks"][0]["items"] = [{"exercise": "Bench Press", "sets": 3}]
    return {day_key: json.loads(json.dumps(day)) for day_key in DAY_KEYS}


def _redo_response() -> str:
    day = _day(food="Steak")
    day["workout"] = {"focus": ["Legs"], "blocks": [{"name": "Main", "items": [{"exercise": "Deadlift", "sets": 4}]}]}
    day["reason"] = "Swapped in lower body work"
    return json.dumps({"days": {day_key: day for day_key in DAY_KEYS}})


def test_workout_redo_keeps_source_meals(session_factory, settings, clock):
    session = session_factory()
    gateway = ScriptedGateway(_redo_response())
    orchestrator = _orchestrator(settings, clock, gateway=gateway)
    owner_id = uuid4()
    _seed_plan(session, owner_id, days=_redo_source_days())
    orchestrator.create_job(
        session, owner_id, _profile(), RedoOptions(redo=True, reason="More leg work", redo_type="workout")
    )

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert job.status == "completed"
    payload = gateway.payloads[0]
    assert payload.stage == "redo"
    assert "More leg work" in payload.user
    assert "Bench Press" in payload.user
    assert "Lentil curry" not in payload.user

    days = session.get(WeeklyPlan, job.result_plan_id).days
    for day in DAY_KEYS:
        assert days[day]["workout"]["blocks"][0]["items"][0]["exercise"] == "Deadlift"
        assert days[day]["nutrition"]["meals"][0]["items"][0]["food"] == "Lentil curry"
        assert days[day]["reason"] == "Swapped in lower body work"
    session.close()


def test_nutrition_redo_keeps_source_workout(session_factory, settings, clock):
    session = session_factory()
    gateway = ScriptedGateway(_redo_response())
    orchestrator = _orchestrator(settings, clock, gateway=gateway)
    owner_id = uuid4()
    _seed_plan(session, owner_id, days=_redo_source_days())
    orchestrator.create_job(
        session, owner_id, _profile(), RedoOptions(redo=True, reason="More red meat", redo_type="nutrition")
    )

    job = orchestrator.run_job(session, orchestrator.claim_next_pending(session))

    assert "Bench Press" not in gateway.payloads[0].user
    days = session.get(WeeklyPlan, job.result_plan_id).days
    assert days["monday"]["workout"]["blocks"][0]["items"][0]["exercise"] == "Bench Press"
    assert days["monday"]["nutrition"]["meals"][0]["items"][0]["food"] == "Steak"
    session.close()


def test_cleanup_old_jobs_keeps_active_rows(session_factory, settings, clock):
    session = session_factory()
    orchestrator = _orchestrator(settings, clock)
    old_owner, active_owner = uuid4(), uuid4()
    finished = orchestrator.create_job(session, old_owner, _profile())
    orchestrator.cancel_job(session, finished.job_id, old_owner)
    waiting = orchestrator.create_job(session, active_owner, _profile())

    clock.advance(days=8)
    assert orchestrator.cleanup_old_jobs(session) == 1
    assert session.scalars(select(PlanJob.id)).all() == [waiting.job_id]
    session.close()


def test_lease_heartbeat_renews_until_stopped():
    calls = []
    done = threading.Event()

    def renew() -> bool:
        calls.append(time.monotonic())
        if len(calls) >= 3:
            done.set()
        return True

    heartbeat = LeaseHeartbeat(renew, 0.01)
    heartbeat.start()
    assert done.wait(2)
    heartbeat.stop()
    count = len(calls)
    time.sleep(0.05)
    assert len(calls) == count


def test_lease_heartbeat_stops_when_lease_lost():
    calls = []
    heartbeat = LeaseHeartbeat(lambda: calls.append(1) or False, 0.01)
    heartbeat.start()
    time.sleep(0.1)
    heartbeat.stop()
    assert calls == [1]
