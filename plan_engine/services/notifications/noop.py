"""No-op notification provider (logs only)."""
from __future__ import annotations

import logging
from uuid import UUID

from plan_engine.services.notifications.base import NotificationResult, NotificationService


logger = logging.getLogger(__name__)


class NoopNotificationService(NotificationService):
    def notify_plan_ready(
        self,
        *,
        owner_id: UUID,
        job_id: UUID,
        plan_id: UUID,
    ) -> NotificationResult:
        logger.info("Notification queued (noop) plan_ready owner=%s job=%s plan=%s", owner_id, job_id, plan_id)
        return NotificationResult(status="noop", reason="notification provider is noop")

    def notify_plan_error(
        self,
        *,
        owner_id: UUID,
        job_id: UUID,
        error_code: str,
    ) -> NotificationResult:
        logger.info("Notification queued (noop) plan_error owner=%s job=%s code=%s", owner_id, job_id, error_code)
        return NotificationResult(status="noop", reason="notification provider is noop")
