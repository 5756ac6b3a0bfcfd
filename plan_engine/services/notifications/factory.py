"""Notification service factory."""
from __future__ import annotations

from functools import lru_cache

from plan_engine.services.notifications.base import NotificationService
from plan_engine.services.notifications.noop import NoopNotificationService


@lru_cache
def get_notification_service(provider: str = "noop") -> NotificationService:
    if provider.lower() == "noop":
        return NoopNotificationService()
    # Push providers plug in here
    return NoopNotificationService()
