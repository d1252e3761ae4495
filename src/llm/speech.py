"""Speech-to-text over OpenAI Whisper, Gemini and LM Studio."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from src.devlog import DevLog
from src.llm.errors import BackendError, ConfigurationError, ProviderConnectionError
from src.llm.lifecycle import RequestLifecycleManager

logger = logging.getLogger(__name__)

STT_PROVIDERS = ("openai", "gemini", "lmstudio")

DEFAULT_STT_URLS = {
    "openai": "https://api.openai.com/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta",
    "lmstudio": "http://localhost:1234/v1",
}

TRANSCRIBE_INSTRUCTION = (
    "Transcribe this audio recording. Return ONLY the transcribed text, "
    "nothing else. No explanations, no formatting."
)


@dataclass(frozen=True)
class SttConfig:
    """Resolved speech-to-text settings for one transcription."""

    provider: str = "openai"
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    language: str = "en"

    @property
    def root_url(self) -> str:
        return (self.base_url or DEFAULT_STT_URLS.get(self.provider, "")).rstrip("/")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SttConfig":
        return cls(
            provider=data.get("provider") or "openai",
            api_key=data.get("api_key") or "",
            base_url=data.get("base_url") or "",
            model=data.get("model") or "",
            language=data.get("language") or "en",
        )


class SpeechToText:
    """Transcribes recorded audio and lists voice-capable models."""

    def __init__(
        self,
        requests: RequestLifecycleManager,
        client: httpx.AsyncClient,
        log: DevLog | None = None,
        transcribe_timeout: float = 30.0,
        list_timeout: float = 15.0,
    ):
        self._requests = requests
        self._client = client
        self._log = log or DevLog()
        self.transcribe_timeout = transcribe_timeout
        self.list_timeout = list_timeout

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    async def transcribe(self, audio: bytes, mime_type: str, stt: SttConfig) -> str:
        """Transcribe ``audio`` and return the recognised text.

        Raises:
            ConfigurationError: Unknown provider or missing key
            BackendError: The backend rejected the request
        """
        handlers: dict[str, Callable[[bytes, str, SttConfig], Awaitable[str]]] = {
            "openai": self._transcribe_whisper,
            "gemini": self._transcribe_gemini,
            "lmstudio": self._transcribe_whisper,
        }
        handler = handlers.get(stt.provider)
        if handler is None:
            raise ConfigurationError(
                f"Unknown STT provider: {stt.provider}. Supported: {', '.join(STT_PROVIDERS)}"
            )

        self._log.info("AI", f"STT transcription via {stt.provider} (lang: {stt.language})")
        text = await handler(audio, mime_type, stt)
        self._log.info("AI", f'STT result: "{text[:60]}..."')
        return text

    async def _transcribe_whisper(self, audio: bytes, mime_type: str, stt: SttConfig) -> str:
        local = stt.provider == "lmstudio"
        label = ("LM Studio", "STT") if local else ("Whisper", "API")
        if not local and not stt.api_key:
            raise ConfigurationError(
                "No API key for OpenAI Whisper. Configure it in Settings under Speech-to-Text."
            )

        headers = {"Authorization": f"Bearer {stt.api_key}"} if stt.api_key else {}
        async with self._requests.begin(self.transcribe_timeout):
            try:
                response = await self._client.post(
                    f"{stt.root_url}/audio/transcriptions",
                    headers=headers,
                    files={"file": ("recording.webm", audio, mime_type)},
                    data={"model": stt.model or "whisper-1", "language": stt.language},
                )
            except (httpx.ConnectError, httpx.ReadError) as e:
                if local:
                    raise self._unreachable(stt.provider) from e
                raise
        _check(response, label)
        return response.json().get("text") or ""

    async def _transcribe_gemini(self, audio: bytes, mime_type: str, stt: SttConfig) -> str:
        if not stt.api_key:
            raise ConfigurationError(
                "No API key for Gemini STT. Configure it in Settings under Speech-to-Text."
            )
        body = {
            "contents": [{
                "parts": [
                    {"text": TRANSCRIBE_INSTRUCTION},
                    {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(audio).decode()}},
                ]
            }]
        }
        model = stt.model or "gemini-2.0-flash"
        async with self._requests.begin(self.transcribe_timeout):
            response = await self._client.post(
                f"{stt.root_url}/models/{model}:generateContent",
                params={"key": stt.api_key},
                json=body,
            )
        _check(response, ("Gemini", "STT"))
        data = response.json()
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or [{}]
        return parts[0].get("text") or ""

    # ------------------------------------------------------------------
    # Model listing
    # ------------------------------------------------------------------

    async def list_models(self, provider: str, api_key: str = "", base_url: str = "") -> list[str]:
        """List models usable for speech on ``provider``."""
        if provider not in STT_PROVIDERS:
            raise ConfigurationError(f"Unknown STT provider: {provider}")
        if provider != "lmstudio" and not api_key:
            label = "OpenAI" if provider == "openai" else "Gemini"
            raise ConfigurationError(f"{label} API key is required for STT test")

        stt = SttConfig(provider=provider, api_key=api_key, base_url=base_url)
        self._log.info("AI", f"Listing STT models for {provider}...")

        async with self._requests.begin(self.list_timeout):
            try:
                if provider == "gemini":
                    response = await self._client.get(
                        f"{stt.root_url}/models", params={"key": api_key}
                    )
                else:
                    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
                    response = await self._client.get(f"{stt.root_url}/models", headers=headers)
            except (httpx.ConnectError, httpx.ReadError) as e:
                raise self._unreachable(provider) from e

        labels = {"openai": "OpenAI", "gemini": "Gemini", "lmstudio": "LM Studio"}
        _check(response, (labels[provider], "API"))
        data = response.json()

        if provider == "gemini":
            names = (m.get("name", "").removeprefix("models/") for m in data.get("models", []))
            models = sorted(n for n in names if n.startswith("gemini"))
        else:
            ids = [m.get("id", "") for m in data.get("data", [])]
            if provider == "openai":
                ids = [i for i in ids if "whisper" in i or "tts" in i]
            models = sorted(i for i in ids if i)

        self._log.info("AI", f"{provider} STT: {len(models)} models found")
        return models

    @staticmethod
    def _unreachable(provider: str) -> ProviderConnectionError:
        return ProviderConnectionError(
            f"Cannot connect to {provider} STT API. "
            "Please check the server is running and the base URL is correct."
        )


def _check(response: httpx.Response, label: tuple[str, str]) -> None:
    if not response.is_success:
        name, kind = label
        raise BackendError(name, response.status_code, response.text[:200], kind=kind)
