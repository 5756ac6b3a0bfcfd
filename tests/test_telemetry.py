"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib

import pytest

from plan_engine.core.config import Settings
from plan_engine.core.context import bind_job_id
from plan_engine.observability import client as client_module
from plan_engine.observability.tracing import Telemetry


class _DummyTrace:
    def __init__(self, metadata=None, **kwargs):
        self.metadata = metadata or {}
        self.error_info = None
        self.ended = False

    def update(self, error_info=None, **kwargs):
        self.error_info = error_info

    def end(self):
        self.ended = True


class _DummyOpik:
    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.traces = []

    def trace(self, **kwargs):
        trace = _DummyTrace(metadata=kwargs.get("metadata"))
        trace.name = kwargs.get("name")
        self.traces.append(trace)
        return trace


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import plan_engine.core.config as core_config
    import plan_engine.main as main_module

    importlib.reload(core_config)
    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")


def test_client_requires_enabled_flag_and_key(monkeypatch) -> None:
    monkeypatch.setattr(client_module, "Opik", _DummyOpik)

    assert client_module.build_opik_client(Settings(_env_file=None, opik_enabled=False)) is None
    assert client_module.build_opik_client(Settings(_env_file=None, opik_enabled=True, opik_api_key=None)) is None

    client = client_module.build_opik_client(
        Settings(_env_file=None, opik_enabled=True, opik_api_key="key", opik_project="plans")
    )
    assert isinstance(client, _DummyOpik)
    assert client.kwargs == {"project_name": "plans", "api_key": "key"}


def test_trace_adds_context_metadata() -> None:
    dummy = _DummyOpik()
    telemetry = Telemetry(dummy)

    with bind_job_id("job-1"):
        with telemetry.trace("plan_job.run", metadata={"retry_count": 0}, user_id="user-1") as trace:
            assert trace is dummy.traces[0]

    trace = dummy.traces[0]
    assert trace.name == "plan_job.run"
    assert trace.metadata == {"retry_count": 0, "user_id": "user-1", "job_id": "job-1"}
    assert trace.ended is True


def test_trace_records_error_and_reraises() -> None:
    dummy = _DummyOpik()
    telemetry = Telemetry(dummy)

    with pytest.raises(RuntimeError):
        with telemetry.trace("failing"):
            raise RuntimeError("boom")

    assert dummy.traces[0].error_info == {"message": "boom"}
    assert dummy.traces[0].ended is True


def test_log_metric_emits_short_trace() -> None:
    dummy = _DummyOpik()
    Telemetry(dummy).log_metric("plan_jobs.created", 1, metadata={"status": "created"})

    trace = dummy.traces[0]
    assert trace.name == "metric:plan_jobs.created"
    assert trace.metadata == {"value": 1, "status": "created"}
    assert trace.ended is True


def test_disabled_telemetry_is_noop() -> None:
    telemetry = Telemetry.disabled()
    assert telemetry.enabled is False
    with telemetry.trace("anything") as trace:
        assert trace is None
    telemetry.log_metric("ignored", 1)
