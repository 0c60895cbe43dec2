"""platform_copilot/providers/factory.py

Adapter selection from configuration.
"""

from __future__ import annotations

# Standard Library
import logging

# Local Modules
from platform_copilot.providers.base import ProviderAdapter
from platform_copilot.providers.gemini import GeminiAdapter
from platform_copilot.providers.ollama_chat import OllamaChatAdapter
from platform_copilot.providers.openai_chat import OpenAIChatAdapter
from platform_copilot.settings import CopilotSettings

logger = logging.getLogger(__name__)

PROVIDERS: tuple[str, ...] = ("gemini", "openai", "ollama")


def _detect(settings: CopilotSettings) -> str:
    if settings.gemini_api_key:
        return "gemini"
    if settings.openai_api_key:
        return "openai"
    if settings.ollama_host:
        return "ollama"
    return ""


def create_provider(settings: CopilotSettings) -> ProviderAdapter | None:
    """Build the configured provider adapter.

    Args:
        settings: Runtime configuration.

    Returns:
        An adapter, or ``None`` when no provider is configured (the copilot
        then answers with the rule-based fallback).

    Raises:
        ValueError: If ``llm_provider`` names an unknown provider.
    """
    choice = settings.llm_provider.strip().lower() or _detect(settings)
    if not choice:
        logger.warning("[providers] no LLM provider configured; using rule-based fallback")
        return None
    if choice not in PROVIDERS:
        raise ValueError(
            f"Unknown llm_provider {settings.llm_provider!r}; expected one of {PROVIDERS}"
        )

    limit = settings.result_char_limit
    if choice == "gemini":
        adapter: ProviderAdapter = GeminiAdapter(
            settings.gemini_model,
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            result_char_limit=limit,
        )
    elif choice == "openai":
        adapter = OpenAIChatAdapter(
            settings.openai_model,
            api_key=settings.openai_api_key or None,
            base_url=settings.openai_base_url or None,
            result_char_limit=limit,
        )
    else:
        adapter = OllamaChatAdapter(
            settings.ollama_model,
            host=settings.ollama_host or None,
            result_char_limit=limit,
        )

    logger.info("[providers] using %s (model=%s)", adapter.name, adapter.model)
    return adapter
