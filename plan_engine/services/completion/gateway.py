"""Ordered provider fallback for completion calls."""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from plan_engine.core.errors import ConfigurationError, ProviderError
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.completion.base import CompletionProvider, PromptPayload

logger = logging.getLogger(__name__)


class CompletionGateway:
    """Tries providers in a fixed order until one returns text.

    After the primary times out, the remaining providers are tried fastest
    first. A ``bad_request`` failure ends the chain since the same prompt would
    be rejected everywhere.
    """

    def __init__(self, providers: Sequence[CompletionProvider], telemetry: Optional[Telemetry] = None) -> None:
        if not providers:
            raise ConfigurationError("No completion providers are configured")
        self.providers: List[CompletionProvider] = list(providers)
        self.telemetry = telemetry or Telemetry.disabled()

    @property
    def primary(self) -> CompletionProvider:
        return self.providers[0]

    def complete(self, payload: PromptPayload) -> str:
        failures: List[ProviderError] = []
        remaining = list(self.providers)

        while remaining:
            provider = remaining.pop(0)
            started = time.perf_counter()
            try:
                with self.telemetry.trace(
                    "completion.call",
                    metadata={"provider": provider.name, "stage": payload.stage},
                ):
                    text = provider.complete(payload)
            except ProviderError as exc:
                failures.append(exc)
                elapsed = time.perf_counter() - started
                logger.warning(
                    "Provider %s failed (kind=%s, status=%s, %.1fs): %s",
                    provider.name,
                    exc.kind,
                    exc.status_code,
                    elapsed,
                    exc.message,
                )
                self.telemetry.log_metric(
                    "completion.provider_failed",
                    1,
                    metadata={"provider": provider.name, "kind": exc.kind, "stage": payload.stage},
                )
                if not exc.retryable:
                    break
                if provider is self.primary and exc.kind == "timeout":
                    remaining.sort(key=lambda candidate: candidate.timeout_seconds)
                continue

            elapsed = time.perf_counter() - started
            logger.info("Provider %s answered in %.1fs (%s chars)", provider.name, elapsed, len(text))
            self.telemetry.log_metric(
                "completion.latency_seconds",
                round(elapsed, 3),
                metadata={"provider": provider.name, "stage": payload.stage},
            )
            if failures:
                self.telemetry.log_metric(
                    "completion.fallback_used",
                    len(failures),
                    metadata={"provider": provider.name, "stage": payload.stage},
                )
            return text

        raise _aggregate(failures)


def _aggregate(failures: List[ProviderError]) -> ProviderError:
    last = failures[-1]
    tried = ", ".join(f"{failure.provider}={failure.kind}" for failure in failures)
    return ProviderError(
        last.kind,
        last.provider,
        f"All completion providers failed ({tried})",
        status_code=last.status_code,
        detail=last.detail,
        attempts=failures,
    )
