"""OpenAI-compatible chat providers (OpenAI, OpenRouter, LM Studio)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from config.settings import get_settings
from src.llm.base import ChatMessage, ChatResult, LLMProvider
from src.llm.streaming import OPENAI_SSE

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """Any backend speaking the ``/chat/completions`` dialect."""

    display_name = "OpenAI"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _convert_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Flat role/content list; images become a two-part content array."""
        converted = []
        for msg in messages:
            if msg.image:
                converted.append({
                    "role": msg.role,
                    "content": [
                        {"type": "text", "text": msg.content},
                        {
                            "type": "image_url",
                            "image_url": {"url": msg.image_data_url, "detail": "low"},
                        },
                    ],
                })
            else:
                converted.append({"role": msg.role, "content": msg.content})
        return converted

    def build_request(self, messages: list[ChatMessage], stream: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": self._convert_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if stream:
            body["stream"] = True
        return body

    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Send a chat completion request."""
        url = f"{self.config.root_url}/chat/completions"
        async with self._requests.begin(self.chat_timeout):
            try:
                response = await self._client.post(
                    url, json=self.build_request(messages), headers=self._headers()
                )
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise
        self.check_status(response)
        data = response.json()

        choices = data.get("choices") or [{}]
        return ChatResult(
            content=(choices[0].get("message") or {}).get("content") or "",
            model=data.get("model", self.config.model),
            provider=self.name,
            usage=data.get("usage"),
        )

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat completion response."""
        url = f"{self.config.root_url}/chat/completions"
        async with self._requests.begin(self.chat_timeout):
            try:
                async with self._client.stream(
                    "POST", url, json=self.build_request(messages, stream=True), headers=self._headers()
                ) as response:
                    async for text in self.relay_stream(response, OPENAI_SSE):
                        yield text
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise

    async def list_models(self) -> list[str]:
        """List model ids from ``/models``."""
        async with self._requests.begin(self.list_timeout):
            try:
                response = await self._client.get(
                    f"{self.config.root_url}/models", headers=self._headers()
                )
            except httpx.TransportError as e:
                self.raise_for_connection(e)
                raise
        self.check_status(response, truncate=200)
        data = response.json()
        return sorted(m["id"] for m in data.get("data", []) if m.get("id"))


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter, which asks clients to identify themselves."""

    display_name = "OpenRouter"

    def _headers(self) -> dict[str, str]:
        settings = get_settings()
        headers = super()._headers()
        headers["HTTP-Referer"] = settings.app_referer
        headers["X-Title"] = settings.app_title
        return headers


class LMStudioProvider(OpenAICompatibleProvider):
    """LM Studio's local server."""

    display_name = "LM Studio"
    start_hint = "LM Studio (open LM Studio, go to the Local Server tab and press Start Server)"
