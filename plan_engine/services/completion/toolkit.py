"""Plain HTTP completion provider for the toolkit endpoint."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from plan_engine.services.completion.base import CompletionProvider, PromptPayload, classify_failure

logger = logging.getLogger(__name__)


class ToolkitProvider(CompletionProvider):
    """POSTs ``{model, messages, temperature, max_tokens}`` and reads ``completion``."""

    def __init__(
        self,
        name: str,
        *,
        endpoint: str,
        timeout_seconds: float,
        model: str = "default",
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.name = name
        self.endpoint = endpoint
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def complete(self, payload: PromptPayload) -> str:
        body = {
            "model": self.model,
            "messages": payload.messages(),
            "temperature": payload.temperature,
            "max_tokens": payload.max_tokens,
        }
        logger.info("Calling %s (stage=%s, timeout=%ss)", self.name, payload.stage, int(self.timeout_seconds))
        try:
            response = self._client.post(self.endpoint, json=body, timeout=self.timeout_seconds)
        except httpx.TimeoutException as exc:
            raise self._error("timeout", f"{self.name} timed out after {int(self.timeout_seconds)}s") from exc
        except httpx.HTTPError as exc:
            raise self._error("unknown", f"{self.name} request failed", detail=str(exc)[:500]) from exc

        if response.status_code >= 400:
            text = response.text
            raise self._error(
                classify_failure(response.status_code, text),
                f"{self.name} returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=text[:500],
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise self._error("unknown", f"{self.name} returned a non-JSON body", detail=response.text[:500]) from exc

        completion = None
        if isinstance(data, dict):
            completion = data.get("completion") or data.get("completionText")
        if not completion or not isinstance(completion, str):
            raise self._error("unknown", f"{self.name} response has no completion text")
        return completion
