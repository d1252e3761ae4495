"""Google Gemini provider over the Generative Language REST API."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from src.llm.base import ChatMessage, ChatResult, LLMProvider
from src.llm.errors import ConfigurationError
from src.llm.streaming import GEMINI_SSE

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response generated."


class GeminiProvider(LLMProvider):
    """Google Gemini provider implementation.

    The API key travels as the ``key`` query parameter rather than a header.
    """

    display_name = "Gemini"

    def _convert_messages(
        self, messages: list[ChatMessage]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert messages to Gemini ``contents``.

        ``assistant`` turns are sent as ``model``, every other non-system role
        as ``user``. System turns are joined into ``systemInstruction``.
        """
        system_parts = []
        contents = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            parts: list[dict[str, Any]] = [{"text": msg.content}]
            if msg.image:
                parts.append({
                    "inlineData": {"mimeType": msg.image_mime_type, "data": msg.image_base64}
                })
            contents.append({
                "role": "model" if msg.role == "assistant" else "user",
                "parts": parts,
            })

        system_prompt = "\n".join(system_parts) if system_parts else None
        return system_prompt, contents

    def build_request(self, messages: list[ChatMessage]) -> dict[str, Any]:
        system_prompt, contents = self._convert_messages(messages)
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    def _model_url(self, method: str) -> str:
        return f"{self.config.root_url}/models/{self.config.model}:{method}"

    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Send a ``generateContent`` request."""
        async with self._requests.begin(self.chat_timeout):
            response = await self._client.post(
                self._model_url("generateContent"),
                params={"key": self.config.api_key},
                json=self.build_request(messages),
            )
        self.check_status(response)
        data = response.json()

        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        return ChatResult(
            content=text or NO_RESPONSE,
            model=self.config.model,
            provider=self.name,
            usage=data.get("usageMetadata"),
        )

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream ``streamGenerateContent`` as Server-Sent Events."""
        async with self._requests.begin(self.chat_timeout):
            async with self._client.stream(
                "POST",
                self._model_url("streamGenerateContent"),
                params={"alt": "sse", "key": self.config.api_key},
                json=self.build_request(messages),
            ) as response:
                async for text in self.relay_stream(response, GEMINI_SSE):
                    yield text

    async def list_models(self) -> list[str]:
        """List ``gemini*`` models, without the ``models/`` prefix."""
        if not self.config.api_key:
            raise ConfigurationError("Gemini API key is required to list models.")
        async with self._requests.begin(self.list_timeout):
            response = await self._client.get(
                f"{self.config.root_url}/models", params={"key": self.config.api_key}
            )
        self.check_status(response, truncate=200)
        data = response.json()

        names = (m.get("name", "").removeprefix("models/") for m in data.get("models", []))
        return sorted(name for name in names if name.startswith("gemini"))
