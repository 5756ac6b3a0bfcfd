from __future__ import annotations

import json
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plan_engine.api.deps import get_orchestrator
from plan_engine.core.config import Settings
from plan_engine.db.deps import get_db
from plan_engine.db.models.checkin import CheckIn
from plan_engine.db.models.generation_run import GenerationRun
from plan_engine.db.models.plan_job import PlanJob
from plan_engine.db.models.weekly_plan import WeeklyPlan
from plan_engine.db.types import utcnow
from plan_engine.main import app
from plan_engine.services.plan_jobs import PlanJobOrchestrator
from plan_engine.services.plan_structure import DAY_KEYS

PROFILE = {"age": 30, "sex": "Female", "height": 165, "weight": 60, "activityLevel": "Lightly Active"}


class StaticGateway:
    def complete(self, payload) -> str:
        day = {
            "workout": {"focus": ["Legs"], "blocks": [{"name": "Main", "items": [{"exercise": "Squat"}]}]},
            "nutrition": {"total_kcal": 1800, "protein_g": 100, "meals": [{"name": "Lunch"}], "hydration_l": 2.5},
            "recovery": {"mobility": ["Hips"], "sleep": ["8h"]},
            "reason": "Balanced day",
        }
        return "```json\n" + json.dumps({"days": {d: day for d in DAY_KEYS}}) + "\n```"


@pytest.fixture()
def client():
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

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    WeeklyPlan.__table__.create(bind=engine)
    PlanJob.__table__.create(bind=engine)
    CheckIn.__table__.create(bind=engine)
    GenerationRun.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    orchestrator = PlanJobOrchestrator(
        settings=Settings(_env_file=None, verification_enabled=False, notifications_enabled=False),
        gateway=StaticGateway(),
        worker_id="api-worker",
    )
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _create(test_client, owner_id, **extra):
    return test_client.post("/plan-jobs", json={"owner_id": str(owner_id), "profile": PROFILE, **extra})


def test_create_and_read_job(client):
    test_client, _ = client
    owner_id = uuid4()

    resp = _create(test_client, owner_id)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "created"
    assert body["request_id"] == resp.headers["X-Request-Id"]

    again = _create(test_client, owner_id)
    assert again.json()["status"] == "existing"
    assert again.json()["job_id"] == body["job_id"]

    job = test_client.get(f"/plan-jobs/{body['job_id']}").json()
    assert job["status"] == "pending"
    assert job["user_id"] == str(owner_id)
    assert job["retry_count"] == 0
    assert job["is_stuck"] is False

    active = test_client.get("/plan-jobs/active", params={"owner_id": str(owner_id)}).json()
    assert active["job"]["id"] == body["job_id"]
    assert test_client.get("/plan-jobs/active", params={"owner_id": str(uuid4())}).json()["job"] is None


def test_unknown_job_is_404(client):
    test_client, _ = client
    resp = test_client.get(f"/plan-jobs/{uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error_code"] == "JOB_NOT_FOUND"


def test_redo_without_plan_is_reported_in_body(client):
    test_client, _ = client
    resp = _create(test_client, uuid4(), redo={"redo": True, "reason": "Too easy"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "error"
    assert resp.json()["error_code"] == "NO_PLAN_TO_REDO"


def test_process_next_generates_plan(client):
    test_client, _ = client
    owner_id = uuid4()
    job_id = _create(test_client, owner_id).json()["job_id"]

    resp = test_client.post("/plan-jobs/process-next")
    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] is True
    assert body["job"]["id"] == job_id
    assert body["job"]["status"] == "completed"

    plan = test_client.get(f"/plans/{body['job']['result_plan_id']}").json()
    assert set(plan) == {"id", "days", "createdAt", "status", "isLocked", "generationNotes"}
    assert list(plan["days"]) == list(DAY_KEYS)
    assert plan["status"] == "generated"
    assert plan["generationNotes"]["parse_strategy"] == "fenced"

    idle = test_client.post("/plan-jobs/process-next", headers={"X-Request-Id": "idle-poll"}).json()
    assert idle == {"processed": False, "job": None, "request_id": "idle-poll"}


def test_unknown_plan_is_404(client):
    test_client, _ = client
    resp = test_client.get(f"/plans/{uuid4()}")
    assert resp.status_code == 404


def test_reclaim_errors_map_to_http(client):
    test_client, _ = client
    owner_id = uuid4()
    job_id = _create(test_client, owner_id).json()["job_id"]

    not_stuck = test_client.post(f"/plan-jobs/{job_id}/reclaim", json={"owner_id": str(owner_id)})
    assert not_stuck.status_code == 409
    assert not_stuck.json()["detail"]["error_code"] == "INVALID_JOB_STATE"

    wrong_owner = test_client.post(f"/plan-jobs/{job_id}/reclaim", json={"owner_id": str(uuid4())})
    assert wrong_owner.status_code == 403

    missing = test_client.post(f"/plan-jobs/{uuid4()}/reclaim", json={"owner_id": str(owner_id)})
    assert missing.status_code == 404


def test_reclaim_stuck_job_requeues_it(client):
    test_client, session_factory = client
    owner_id = uuid4()
    job_id = _create(test_client, owner_id).json()["job_id"]

    now = utcnow()
    session = session_factory()
    session.execute(
        update(PlanJob)
        .where(PlanJob.status == "pending")
        .values(
            status="processing",
            worker_id="crashed-worker",
            started_at=now - timedelta(minutes=10),
            locked_until=now - timedelta(minutes=5),
        )
    )
    session.commit()
    session.close()

    assert test_client.get(f"/plan-jobs/{job_id}").json()["is_stuck"] is True

    resp = test_client.post(f"/plan-jobs/{job_id}/reclaim", json={"owner_id": str(owner_id)})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    assert body["retry_count"] == 1
    assert body["error_code"] == "CLIENT_RESET"
    assert body["locked_until"] is None


def test_cancel_job(client):
    test_client, _ = client
    owner_id = uuid4()
    job_id = _create(test_client, owner_id).json()["job_id"]

    resp = test_client.post(f"/plan-jobs/{job_id}/cancel", json={"owner_id": str(owner_id)})
    assert resp.status_code == 200
    assert resp.json()["status"] == "failed"
    assert resp.json()["error_code"] == "USER_CANCELLED"

    assert _create(test_client, owner_id).json()["status"] == "created"


def test_plan_estimate(client):
    test_client, _ = client
    resp = test_client.post("/plan-estimates", json={"profile": {}, "elapsed_seconds": 10})
    assert resp.status_code == 200
    body = resp.json()
    assert body["seconds"] == 315
    assert body["source"] == "profile"
    assert body["confidence"] == "low"
    assert body["progress_message"] == "Analyzing your profile & goals..."
    assert body["remaining_message"] == "About 6 minutes remaining"

    bare = test_client.post("/plan-estimates", json={"profile": {"trainingDays": 3}}).json()
    assert bare["progress_message"] is None
