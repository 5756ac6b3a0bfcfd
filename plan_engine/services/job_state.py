"""Plan job status enum, transition table and processing lease."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet

from plan_engine.core.errors import JobStateError


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: "str | JobStatus") -> "JobStatus":
        try:
            return cls(value)
        except ValueError as exc:
            raise JobStateError(f"Unknown job status: {value!r}") from exc


VALID_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    # processing -> pending is the stuck-job reclaim
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def ensure_transition(current: "str | JobStatus", target: "str | JobStatus") -> JobStatus:
    """Return the target status or raise ``JobStateError`` for an illegal move."""
    source = JobStatus.parse(current)
    destination = JobStatus.parse(target)
    if destination not in VALID_TRANSITIONS[source]:
        raise JobStateError(f"Illegal job transition {source.value} -> {destination.value}")
    return destination


@dataclass(frozen=True)
class Lease:
    """Time-bounded claim a worker holds on a processing job."""

    owner_id: str
    expires_at: datetime

    @classmethod
    def acquire(cls, owner_id: str, duration: timedelta, now: datetime) -> "Lease":
        return cls(owner_id=owner_id, expires_at=now + duration)

    def renew(self, duration: timedelta, now: datetime) -> "Lease":
        return replace(self, expires_at=now + duration)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
