"""LLM provider factory for creating provider instances."""

from __future__ import annotations

import logging
from typing import Any

from src.llm.base import LLMProvider, ProviderConfig

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Factory for creating LLM provider instances.

    Maps provider names to adapter classes. Names without a registered
    adapter are treated as OpenAI-compatible endpoints.
    """

    _providers: dict[str, type[LLMProvider]] = {}

    @classmethod
    def _ensure_registered(cls) -> None:
        """Lazy registration of built-in providers."""
        if cls._providers:
            return

        from src.llm.providers.anthropic_provider import AnthropicProvider
        from src.llm.providers.google_provider import GeminiProvider
        from src.llm.providers.ollama_provider import OllamaProvider
        from src.llm.providers.openai_provider import (
            LMStudioProvider,
            OpenAICompatibleProvider,
            OpenRouterProvider,
        )

        cls._providers = {
            "openai": OpenAICompatibleProvider,
            "openrouter": OpenRouterProvider,
            "lmstudio": LMStudioProvider,
            "anthropic": AnthropicProvider,
            "gemini": GeminiProvider,
            "ollama": OllamaProvider,
        }

    @classmethod
    def register(cls, name: str, provider_class: type[LLMProvider]) -> None:
        """Register a custom provider class.

        Args:
            name: Provider name (e.g., 'custom')
            provider_class: Provider class implementing LLMProvider
        """
        cls._ensure_registered()
        cls._providers[name] = provider_class
        logger.info(f"Registered LLM provider: {name}")

    @classmethod
    def provider_class(cls, name: str) -> type[LLMProvider]:
        cls._ensure_registered()
        if name in cls._providers:
            return cls._providers[name]
        return cls._providers["openai"]

    @classmethod
    def create(cls, config: ProviderConfig, **kwargs: Any) -> LLMProvider:
        """Create an adapter for ``config``.

        Args:
            config: Backend coordinates and credentials
            **kwargs: Passed through to the adapter (requests, client, log, timeouts)

        Returns:
            Configured LLMProvider instance
        """
        provider_class = cls.provider_class(config.name)
        logger.debug(f"Creating LLM provider: {config.name} (model: {config.model or 'unset'})")
        return provider_class(config, **kwargs)

    @classmethod
    def get_available_providers(cls) -> list[str]:
        """List available provider names."""
        cls._ensure_registered()
        return list(cls._providers.keys())
