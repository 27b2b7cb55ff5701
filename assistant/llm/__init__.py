"""Pluggable LLM backends for the assistant brain."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.retry import RetryPolicy

from assistant.llm.base import LLMProvider, LLMResponse, Message, ToolCall, Usage
from assistant.llm.http import ProviderError, StreamError

if TYPE_CHECKING:
    from assistant.config import AssistantSettings

PROVIDER_NAMES = ("openai", "openrouter", "anthropic")


def resolve_provider_name(settings: AssistantSettings) -> str:
    """Pick the configured provider, or infer it from the first available API key."""
    name = settings.llm_provider.strip().lower()
    if name in PROVIDER_NAMES:
        return name

    if settings.openai_api_key:
        return "openai"
    if settings.openrouter_api_key:
        return "openrouter"
    if settings.anthropic_api_key:
        return "anthropic"

    raise ValueError(
        "No provider configured. Set LLM_PROVIDER or one of "
        "OPENAI_API_KEY, OPENROUTER_API_KEY, ANTHROPIC_API_KEY."
    )


def create_provider(settings: AssistantSettings) -> tuple[str, LLMProvider]:
    """Instantiate the configured LLM provider."""
    name = resolve_provider_name(settings)
    retry = RetryPolicy(
        max_retries=settings.provider_max_retries,
        base_delay=settings.provider_retry_base_delay,
        max_delay=settings.provider_retry_max_delay,
    )

    if name == "openai":
        from assistant.llm.openai_compat import OpenAICompatProvider

        if not settings.openai_api_key:
            raise ValueError("Missing OpenAI API key. Set OPENAI_API_KEY.")
        return name, OpenAICompatProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model or settings.llm_model or None,
            base_url=settings.openai_api_base or None,
            timeout=settings.provider_timeout,
            retry=retry,
        )

    if name == "openrouter":
        from assistant.llm.openai_compat import openrouter_provider

        if not settings.openrouter_api_key:
            raise ValueError("Missing OpenRouter API key. Set OPENROUTER_API_KEY.")
        return name, openrouter_provider(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model or settings.openai_model or settings.llm_model or None,
            base_url=settings.openrouter_api_base or None,
            referer=settings.openrouter_referer or None,
            title=settings.openrouter_title or None,
            timeout=settings.provider_timeout,
            retry=retry,
        )

    from assistant.llm.anthropic_llm import AnthropicProvider

    if not settings.anthropic_api_key:
        raise ValueError("Missing Anthropic API key. Set ANTHROPIC_API_KEY.")
    return name, AnthropicProvider(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model or settings.llm_model or None,
        base_url=settings.anthropic_api_base or None,
        timeout=settings.provider_timeout,
        retry=retry,
        max_tokens=settings.anthropic_max_tokens,
        version=settings.anthropic_version,
    )


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Message",
    "ProviderError",
    "StreamError",
    "ToolCall",
    "Usage",
    "create_provider",
    "resolve_provider_name",
]
