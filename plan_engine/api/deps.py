"""Service dependencies for API routes."""
from __future__ import annotations

from functools import lru_cache

from plan_engine.core.config import settings
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.plan_jobs import PlanJobOrchestrator


@lru_cache
def get_telemetry() -> Telemetry:
    return Telemetry.from_settings(settings)


def get_orchestrator() -> PlanJobOrchestrator:
    return PlanJobOrchestrator(settings=settings, telemetry=get_telemetry())
