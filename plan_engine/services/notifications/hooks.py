"""Plan job notification events."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from time import perf_counter
from typing import Literal, Optional
from uuid import UUID

from plan_engine.core.config import Settings
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.notifications.base import NotificationResult, NotificationService
from plan_engine.services.notifications.factory import get_notification_service


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanEvent:
    type: Literal["plan_ready", "plan_error"]
    owner_id: UUID
    job_id: UUID
    plan_id: Optional[UUID] = None
    error_code: Optional[str] = None


class PlanEventNotifier:
    """Emits a ``PlanEvent`` for every terminal job transition."""

    def __init__(
        self,
        settings: Settings,
        telemetry: Optional[Telemetry] = None,
        service: Optional[NotificationService] = None,
    ) -> None:
        self.settings = settings
        self.telemetry = telemetry or Telemetry.disabled()
        self._service = service

    @property
    def service(self) -> NotificationService:
        if self._service is None:
            self._service = get_notification_service(self.settings.notifications_provider)
        return self._service

    def emit(self, event: PlanEvent) -> NotificationResult:
        if not self.settings.notifications_enabled:
            self.telemetry.log_metric("notifications.skipped", 1, metadata={"event": event.type})
            return NotificationResult(status="skipped", reason="notifications disabled")

        metadata = {k: str(v) for k, v in asdict(event).items() if v is not None}
        metadata["provider"] = self.settings.notifications_provider
        start = perf_counter()
        with self.telemetry.trace(f"notifications.{event.type}", metadata=metadata, user_id=str(event.owner_id)):
            if event.type == "plan_ready":
                result = self.service.notify_plan_ready(
                    owner_id=event.owner_id,
                    job_id=event.job_id,
                    plan_id=event.plan_id,
                )
            else:
                result = self.service.notify_plan_error(
                    owner_id=event.owner_id,
                    job_id=event.job_id,
                    error_code=event.error_code or "UNKNOWN",
                )
        duration_ms = (perf_counter() - start) * 1000
        self.telemetry.log_metric("notifications.sent", 1, metadata={"event": event.type})
        self.telemetry.log_metric("notifications.duration_ms", duration_ms, metadata={"event": event.type})
        return result
