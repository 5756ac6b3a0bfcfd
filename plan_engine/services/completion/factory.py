"""Build the completion gateway from settings."""
from __future__ import annotations

import logging
from typing import List, Optional

from plan_engine.core.config import Settings
from plan_engine.core.errors import ConfigurationError
from plan_engine.observability.tracing import Telemetry
from plan_engine.services.completion.base import CompletionProvider
from plan_engine.services.completion.gateway import CompletionGateway
from plan_engine.services.completion.openai_compat import OpenAICompatibleProvider
from plan_engine.services.completion.toolkit import ToolkitProvider

logger = logging.getLogger(__name__)

DEEPSEEK_MAX_TOKENS = 8192


def build_providers(settings: Settings) -> List[CompletionProvider]:
    """Configured providers in fallback order: DeepSeek, Gemini, toolkit."""
    providers: List[CompletionProvider] = []
    if settings.deepseek_api_key:
        providers.append(
            OpenAICompatibleProvider(
                "deepseek",
                api_key=settings.deepseek_api_key,
                base_url=settings.deepseek_base_url,
                model=settings.deepseek_model,
                timeout_seconds=settings.deepseek_timeout_seconds,
                max_tokens_cap=DEEPSEEK_MAX_TOKENS,
            )
        )
    if settings.gemini_api_key:
        providers.append(
            OpenAICompatibleProvider(
                "gemini",
                api_key=settings.gemini_api_key,
                base_url=settings.gemini_base_url,
                model=settings.gemini_model,
                timeout_seconds=settings.gemini_timeout_seconds,
            )
        )
    if settings.toolkit_url:
        providers.append(
            ToolkitProvider(
                "toolkit",
                endpoint=settings.toolkit_url,
                timeout_seconds=settings.toolkit_timeout_seconds,
            )
        )
    return providers


def build_completion_gateway(
    settings: Settings,
    telemetry: Optional[Telemetry] = None,
    *,
    preferred: Optional[str] = None,
) -> CompletionGateway:
    """Return a gateway; ``preferred`` moves the named provider to the front."""
    providers = build_providers(settings)
    if not providers:
        raise ConfigurationError(
            "Configure at least one of DEEPSEEK_API_KEY, GEMINI_API_KEY or TOOLKIT_URL"
        )
    if preferred:
        names = [provider.name for provider in providers]
        if preferred not in names:
            raise ConfigurationError(f"Provider '{preferred}' is not configured (available: {', '.join(names)})")
        providers.sort(key=lambda provider: provider.name != preferred)
    logger.info("Completion providers: %s", ", ".join(provider.name for provider in providers))
    return CompletionGateway(providers, telemetry=telemetry)
