"""LLM providers module."""

from src.llm.providers.openai_provider import (
    LMStudioProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
)
from src.llm.providers.anthropic_provider import AnthropicProvider
from src.llm.providers.google_provider import GeminiProvider
from src.llm.providers.ollama_provider import OllamaProvider

__all__ = [
    "OpenAICompatibleProvider",
    "OpenRouterProvider",
    "LMStudioProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OllamaProvider",
]
