"""Provider interface, prompt payload and failure classification."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from plan_engine.core.errors import ProviderError

AUTH_MARKERS = ("invalid api key", "api_key_invalid", "incorrect api key", "unauthorized", "authentication")
QUOTA_MARKERS = ("quota", "insufficient balance", "insufficient_quota", "billing")
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests")
TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")


@dataclass(frozen=True)
class PromptPayload:
    system: str
    user: str
    temperature: float = 0.6
    max_tokens: int = 8192
    stage: str = "generation"

    def messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def classify_failure(status_code: Optional[int], body: str | None) -> str:
    """Map an HTTP status and response body onto a ``ProviderError`` kind."""
    lowered = (body or "").lower()
    if status_code in (401, 403) or any(marker in lowered for marker in AUTH_MARKERS):
        return "auth"
    if status_code == 402 or any(marker in lowered for marker in QUOTA_MARKERS):
        return "quota"
    if status_code == 429 or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
        return "rate_limit"
    if status_code in (408, 504, 524) or any(marker in lowered for marker in TIMEOUT_MARKERS):
        return "timeout"
    if status_code in (400, 404, 413, 422):
        return "bad_request"
    return "unknown"


class CompletionProvider:
    """Base interface for completion providers.

    ``complete`` returns the raw completion text or raises ``ProviderError``;
    it never retries on its own.
    """

    name: str = "provider"
    timeout_seconds: float = 60.0

    def complete(self, payload: PromptPayload) -> str:
        raise NotImplementedError

    def _error(self, kind: str, message: str, **kwargs) -> ProviderError:
        return ProviderError(kind, self.name, message, **kwargs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, timeout={self.timeout_seconds})"
