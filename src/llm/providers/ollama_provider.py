"""Ollama local LLM provider implementation."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from src.llm.base import ChatMessage, ChatResult, LLMProvider
from src.llm.streaming import OLLAMA_NDJSON

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """Ollama local model provider implementation.

    Supports any model available through Ollama (llama3.2, codellama, mistral, etc.)
    """

    display_name = "Ollama"
    start_hint = "Ollama (run: ollama serve)"

    def _convert_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Convert messages for Ollama; images ride in an ``images`` list."""
        converted = []
        for msg in messages:
            msg_copy: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.image:
                msg_copy["images"] = [msg.image_base64]
            converted.append(msg_copy)
        return converted

    def build_request(self, messages: list[ChatMessage], stream: bool = False) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": self._convert_messages(messages),
            "stream": stream,
        }

    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Send a chat completion request to Ollama."""
        logger.debug(f"Ollama chat request: model={self.config.model}, messages={len(messages)}")

        async with self._requests.begin(self.chat_timeout):
            try:
                response = await self._client.post(
                    f"{self.config.root_url}/api/chat", json=self.build_request(messages)
                )
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise
        self.check_status(response)
        data = response.json()

        return ChatResult(
            content=(data.get("message") or {}).get("content", ""),
            model=data.get("model", self.config.model),
            provider=self.name,
            usage={
                "prompt_tokens": data.get("prompt_eval_count", 0),
                "completion_tokens": data.get("eval_count", 0),
            },
        )

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat completion response from Ollama."""
        async with self._requests.begin(self.chat_timeout):
            try:
                async with self._client.stream(
                    "POST",
                    f"{self.config.root_url}/api/chat",
                    json=self.build_request(messages, stream=True),
                ) as response:
                    async for text in self.relay_stream(response, OLLAMA_NDJSON):
                        yield text
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise

    async def list_models(self) -> list[str]:
        """List installed models from ``/api/tags``."""
        async with self._requests.begin(self.list_timeout):
            try:
                response = await self._client.get(f"{self.config.root_url}/api/tags")
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise
        self.check_status(response, truncate=200)
        data = response.json()
        return sorted(m["name"] for m in data.get("models", []) if m.get("name"))
