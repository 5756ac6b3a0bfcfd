"""Notification service interface."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass
class NotificationResult:
    status: str
    reason: str


class NotificationService:
    """Base interface for notification providers."""

    def notify_plan_ready(
        self,
        *,
        owner_id: UUID,
        job_id: UUID,
        plan_id: UUID,
    ) -> NotificationResult:
        raise NotImplementedError

    def notify_plan_error(
        self,
        *,
        owner_id: UUID,
        job_id: UUID,
        error_code: str,
    ) -> NotificationResult:
        raise NotImplementedError
