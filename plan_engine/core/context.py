"""Per-request and per-job context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
job_id_ctx_var: ContextVar[str | None] = ContextVar("job_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_job_id() -> str | None:
    """Return the id of the plan job being processed, if any."""
    return job_id_ctx_var.get()


@contextmanager
def bind_job_id(job_id: object) -> Iterator[None]:
    token = job_id_ctx_var.set(str(job_id))
    try:
        yield
    finally:
        job_id_ctx_var.reset(token)
