"""Tracing and metrics service wrapping Opik.

One ``Telemetry`` instance is built per process and handed to the services
that need it. With no client attached every call is a no-op.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from plan_engine.core.config import Settings
from plan_engine.core.context import get_job_id, get_request_id
from plan_engine.observability.client import build_opik_client

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from opik.api_objects.trace.trace_client import Trace
else:  # pragma: no cover - typing helper
    Trace = object  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class Telemetry:
    def __init__(self, client: Any = None) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "Telemetry":
        return cls(build_opik_client(settings))

    @classmethod
    def disabled(cls) -> "Telemetry":
        return cls(None)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @contextmanager
    def trace(
        self,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Iterator[Optional["Trace"]]:
        """Open a trace; errors raised inside are attached to it and re-raised."""
        opik_trace: Optional["Trace"] = None

        if self._client is not None:
            trace_metadata = dict(metadata or {})
            if user_id:
                trace_metadata.setdefault("user_id", str(user_id))
            request_id = get_request_id()
            if request_id:
                trace_metadata.setdefault("request_id", request_id)
            job_id = get_job_id()
            if job_id:
                trace_metadata.setdefault("job_id", job_id)
            try:
                opik_trace = self._client.trace(name=name, metadata=trace_metadata or None)
            except Exception as exc:  # pragma: no cover - defensive guard
                logger.debug("Unable to start Opik trace %s: %s", name, exc)
                opik_trace = None

        try:
            yield opik_trace
        except Exception as exc:
            if opik_trace:
                try:
                    opik_trace.update(error_info={"message": str(exc)})
                except Exception:  # pragma: no cover
                    logger.debug("Failed to attach error info to Opik trace %s", name, exc_info=True)
            raise
        finally:
            if opik_trace:
                try:
                    opik_trace.end()
                except Exception:  # pragma: no cover
                    logger.debug("Failed to close Opik trace %s cleanly", name, exc_info=True)

    def log_metric(self, name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record a metric as a short-lived Opik trace."""
        if self._client is None:
            return

        payload: Dict[str, Any] = {"value": value}
        if metadata:
            payload.update(metadata)

        try:
            metric_trace = self._client.trace(name=f"metric:{name}", metadata=payload)
            metric_trace.end()
        except Exception as exc:  # pragma: no cover - defensive
            logger.debug("Unable to record metric %s: %s", name, exc)
