"""LLM module - Multi-provider chat interface."""

from src.llm.base import ChatMessage, ChatResult, LLMProvider, ProviderConfig
from src.llm.factory import ProviderFactory

__all__ = [
    "ChatMessage",
    "ChatResult",
    "LLMProvider",
    "ProviderConfig",
    "ProviderFactory",
]
