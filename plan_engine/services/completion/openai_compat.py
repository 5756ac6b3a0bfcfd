"""Providers that speak the OpenAI chat-completions protocol (DeepSeek, Gemini)."""
from __future__ import annotations

import logging
from typing import Any, Optional

import openai

from plan_engine.services.completion.base import CompletionProvider, PromptPayload, classify_failure

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(CompletionProvider):
    def __init__(
        self,
        name: str,
        *,
        api_key: str,
        model: str,
        timeout_seconds: float,
        base_url: Optional[str] = None,
        max_tokens_cap: Optional[int] = None,
        client: Any = None,
    ) -> None:
        self.name = name
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_tokens_cap = max_tokens_cap
        # SDK retries are disabled; the gateway owns fallback.
        self._client = client or openai.OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )

    def complete(self, payload: PromptPayload) -> str:
        max_tokens = payload.max_tokens
        if self.max_tokens_cap:
            max_tokens = min(max_tokens, self.max_tokens_cap)
        logger.info(
            "Calling %s (model=%s, stage=%s, prompt_chars=%s, timeout=%ss)",
            self.name,
            self.model,
            payload.stage,
            len(payload.system) + len(payload.user),
            int(self.timeout_seconds),
        )
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=payload.messages(),
                temperature=payload.temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise self._error("timeout", f"{self.name} timed out after {int(self.timeout_seconds)}s") from exc
        except openai.APIStatusError as exc:
            body = _error_body(exc)
            kind = classify_failure(exc.status_code, body)
            raise self._error(
                kind,
                f"{self.name} returned HTTP {exc.status_code}",
                status_code=exc.status_code,
                detail=body[:500],
            ) from exc
        except openai.APIConnectionError as exc:
            raise self._error("unknown", f"{self.name} connection failed", detail=str(exc)[:500]) from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise self._error("unknown", f"{self.name} returned an empty completion")
        return content


def _error_body(exc: "openai.APIStatusError") -> str:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    if body:
        return str(body)
    return exc.message or ""
