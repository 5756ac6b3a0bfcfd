"""Error taxonomy shared by the plan generation pipeline.

Every error carries a short, stable ``error_code`` that is safe to persist on a
job row and to show to clients. Raw provider bodies stay in ``detail`` and are
only ever logged.
"""
from __future__ import annotations

from typing import List, Optional, Sequence


class PlanEngineError(Exception):
    error_code = "UNKNOWN"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConfigurationError(PlanEngineError):
    """Missing or invalid provider configuration. Never retried."""

    error_code = "CONFIG_ERROR"


PROVIDER_ERROR_KINDS = ("auth", "quota", "rate_limit", "timeout", "bad_request", "unknown")

_KIND_TO_CODE = {
    "auth": "AUTH_ERROR",
    "quota": "QUOTA_EXCEEDED",
    "rate_limit": "RATE_LIMITED",
    "timeout": "AI_TIMEOUT",
    "bad_request": "BAD_REQUEST",
    "unknown": "AI_ERROR",
}


class ProviderError(PlanEngineError):
    """A completion provider call failed.

    ``attempts`` holds the errors of providers tried earlier in the same
    fallback chain when this error is the aggregated result of the chain.
    """

    def __init__(
        self,
        kind: str,
        provider: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: str | None = None,
        attempts: Sequence["ProviderError"] = (),
    ) -> None:
        if kind not in PROVIDER_ERROR_KINDS:
            kind = "unknown"
        super().__init__(message, detail=detail)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.attempts: List[ProviderError] = list(attempts)

    @property
    def error_code(self) -> str:  # type: ignore[override]
        return _KIND_TO_CODE[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind != "bad_request"

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind!r}, provider={self.provider!r}, status_code={self.status_code!r})"


class ParseError(PlanEngineError):
    """Model output never produced a JSON structure, even after repair."""

    error_code = "PARSE_FAILED"


class ValidationError(PlanEngineError):
    """Parsed structure still violates the required plan shape after repair."""

    error_code = "VALIDATION_FAILED"

    def __init__(self, message: str, issues: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.issues = list(issues)


class JobStateError(PlanEngineError):
    """Operation is not allowed for the job's current state. Nothing was mutated."""

    error_code = "INVALID_JOB_STATE"


class JobNotFoundError(PlanEngineError):
    error_code = "JOB_NOT_FOUND"


class JobOwnershipError(PlanEngineError):
    error_code = "JOB_NOT_OWNED"
