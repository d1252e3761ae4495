"""Anthropic Messages API provider."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from src.llm.base import ChatMessage, ChatResult, LLMProvider
from src.llm.streaming import ANTHROPIC_SSE

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider implementation."""

    display_name = "Anthropic"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _convert_messages(
        self, messages: list[ChatMessage]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Extract system prompt and convert messages for Anthropic.

        System turns are joined into the top-level ``system`` field; an image
        becomes a base64 block placed before the text block.
        """
        system_parts = []
        converted = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            if msg.image:
                content: Any = [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": msg.image_mime_type,
                            "data": msg.image_base64,
                        },
                    },
                    {"type": "text", "text": msg.content},
                ]
            else:
                content = msg.content
            converted.append({"role": msg.role, "content": content})

        system_prompt = "\n".join(system_parts) if system_parts else None
        return system_prompt, converted

    def build_request(self, messages: list[ChatMessage], stream: bool = False) -> dict[str, Any]:
        system_prompt, converted = self._convert_messages(messages)
        body: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.max_tokens,
            "messages": converted,
        }
        if system_prompt:
            body["system"] = system_prompt
        if stream:
            body["stream"] = True
        return body

    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Send a chat completion request to Anthropic."""
        async with self._requests.begin(self.chat_timeout):
            response = await self._client.post(
                f"{self.config.root_url}/v1/messages",
                json=self.build_request(messages),
                headers=self._headers(),
            )
        self.check_status(response)
        data = response.json()

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type", "text") == "text"
        )
        return ChatResult(
            content=text,
            model=data.get("model", self.config.model),
            provider=self.name,
            usage=data.get("usage"),
        )

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat completion response from Anthropic."""
        async with self._requests.begin(self.chat_timeout):
            async with self._client.stream(
                "POST",
                f"{self.config.root_url}/v1/messages",
                json=self.build_request(messages, stream=True),
                headers=self._headers(),
            ) as response:
                async for text in self.relay_stream(response, ANTHROPIC_SSE):
                    yield text

    async def list_models(self) -> list[str]:
        """List model ids from ``/v1/models``."""
        async with self._requests.begin(self.list_timeout):
            response = await self._client.get(
                f"{self.config.root_url}/v1/models", headers=self._headers()
            )
        self.check_status(response, truncate=200)
        data = response.json()
        return sorted(m["id"] for m in data.get("data", []) if m.get("id"))
