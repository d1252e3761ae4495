"""AI service facade used by the API server, the CLI and the copilot loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, AsyncIterator, Callable, Iterable

import httpx

from config.settings import Settings, get_settings
from config.store import JsonSettingsStore, SettingsStore
from src.automation import prompts
from src.devlog import DevLog, LogSink
from src.llm.base import ChatMessage, ChatResult, LLMProvider, ProviderConfig
from src.llm.errors import RequestAborted
from src.llm.factory import ProviderFactory
from src.llm.lifecycle import RequestLifecycleManager
from src.llm.speech import SpeechToText, SttConfig
from src.llm.streaming import StreamDone, StreamError, StreamEvent, TextDelta

logger = logging.getLogger(__name__)

MessageLike = ChatMessage | dict[str, Any]


def _coerce_messages(messages: Iterable[MessageLike]) -> list[ChatMessage]:
    return [m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m) for m in messages]


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class AIService:
    """Chat, streaming, model listing and speech-to-text across providers.

    Provider coordinates are read from the settings store (``ai_settings``)
    on every call, so edits made through the settings UI apply immediately.
    All network calls share one :class:`RequestLifecycleManager`; ``abort()``
    cancels everything in flight.
    """

    def __init__(
        self,
        store: SettingsStore | None = None,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        on_log: LogSink | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else JsonSettingsStore(settings=self.settings)
        self.log = DevLog(on_log)
        self.requests = RequestLifecycleManager(self.log)

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=None)
        self.speech = SpeechToText(
            self.requests,
            self._client,
            self.log,
            transcribe_timeout=self.settings.stt_timeout,
            list_timeout=self.settings.list_models_timeout,
        )

    @property
    def on_log(self) -> LogSink | None:
        return self.log.sink

    @on_log.setter
    def on_log(self, sink: LogSink | None) -> None:
        self.log.sink = sink

    # ------------------------------------------------------------------
    # Provider resolution
    # ------------------------------------------------------------------

    @property
    def active_provider(self) -> str:
        ai_settings = self.store.get("ai_settings") or {}
        return ai_settings.get("active_provider") or self.settings.active_provider

    def set_active_provider(self, name: str) -> None:
        ai_settings = self.store.get("ai_settings") or {}
        ai_settings["active_provider"] = name
        self.store.set("ai_settings", ai_settings)
        self.log.info("AI", f"Active provider set to {name}")

    def provider_config(self, name: str | None = None) -> ProviderConfig:
        """Resolve the configuration for ``name`` (or the active provider)."""
        ai_settings = self.store.get("ai_settings") or {}
        name = name or ai_settings.get("active_provider") or self.settings.active_provider
        entry = (ai_settings.get("providers") or {}).get(name) or {}
        return ProviderConfig(
            name=name,
            base_url=entry.get("base_url") or "",
            model=entry.get("model") or "",
            api_key=entry.get("api_key") or "",
        )

    def _adapter(self, config: ProviderConfig) -> LLMProvider:
        return ProviderFactory.create(
            config,
            requests=self.requests,
            client=self._client,
            log=self.log,
            chat_timeout=self.settings.chat_timeout,
            list_timeout=self.settings.list_models_timeout,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(self, messages: Iterable[MessageLike], provider: str | None = None) -> ChatResult:
        """Send a conversation and return the complete reply.

        Args:
            messages: Conversation turns, as ChatMessage or ``{"role", "content", "image"}`` dicts
            provider: Provider name; the active provider when omitted

        Returns:
            ChatResult with content, model, provider and usage

        Raises:
            ConfigurationError: Before any I/O, when the provider is misconfigured
            RequestAborted: When ``abort()`` or the deadline cancelled the call
        """
        messages = _coerce_messages(messages)
        config = self.provider_config(provider)
        started = time.monotonic()
        try:
            adapter = self._adapter(config)
            adapter.validate()
            self.log.info(
                "AI",
                f"Chat request to {config.name} / {config.model}",
                {"provider": config.name, "model": config.model, "message_count": len(messages)},
            )
            result = await adapter.chat(messages)
        except RequestAborted as e:
            self.log.warn("AI", f"Chat request to {config.name} cancelled: {e}")
            raise
        except Exception as e:
            self.log.error("AI", f"Chat request to {config.name} failed: {e}", {"provider": config.name})
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            "AI",
            f"Chat response from {config.name} ({elapsed_ms}ms)",
            {
                "provider": config.name,
                "model": result.model,
                "usage": result.usage,
                "elapsed_ms": elapsed_ms,
                "content_length": len(result.content),
            },
        )
        return result

    async def stream_chat(
        self, messages: Iterable[MessageLike], provider: str | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream a reply as events.

        Yields :class:`TextDelta` events in order, then exactly one
        :class:`StreamDone` (carrying the assembled ChatResult) or
        :class:`StreamError`. Configuration problems arrive as a StreamError
        too. Leaving the iteration early cancels the underlying request.
        """
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        producer = asyncio.create_task(self._produce(list(messages), provider, queue))
        try:
            while True:
                event = await queue.get()
                yield event
                if not isinstance(event, TextDelta):
                    break
        finally:
            if not producer.done():
                producer.cancel()

    async def _produce(
        self,
        messages: list[MessageLike],
        provider: str | None,
        queue: asyncio.Queue[StreamEvent],
    ) -> None:
        chunks: list[str] = []
        started = time.monotonic()
        name = provider or "active provider"
        try:
            config = self.provider_config(provider)
            name = config.name
            chat_messages = _coerce_messages(messages)
            adapter = self._adapter(config)
            adapter.validate()
            self.log.info(
                "AI",
                f"Stream request to {config.name} / {config.model}",
                {"provider": config.name, "model": config.model, "message_count": len(chat_messages)},
            )
            async for text in adapter.stream(chat_messages):
                chunks.append(text)
                queue.put_nowait(TextDelta(text))
        except RequestAborted as e:
            self.log.warn("AI", f"Stream from {name} cancelled after {len(chunks)} chunks: {e}")
            queue.put_nowait(StreamError(e, aborted=True))
            return
        except Exception as e:
            self.log.error("AI", f"Stream from {name} failed: {e}", {"provider": name})
            queue.put_nowait(StreamError(e))
            return

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            "AI",
            f"Stream complete ({elapsed_ms}ms, {len(chunks)} chunks)",
            {"provider": config.name, "model": config.model, "elapsed_ms": elapsed_ms},
        )
        result = ChatResult(content="".join(chunks), model=config.model, provider=config.name)
        queue.put_nowait(StreamDone(result))

    async def chat_stream(
        self,
        messages: Iterable[MessageLike],
        provider: str | None = None,
        on_chunk: Callable[[str], Any] | None = None,
        on_done: Callable[[ChatResult], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> None:
        """Callback form of :meth:`stream_chat`; exactly one of on_done/on_error fires.

        A failing on_chunk or on_done callback ends the stream and is reported
        through on_error.
        """
        events = self.stream_chat(messages, provider)
        error: BaseException | None = None
        try:
            async for event in events:
                if isinstance(event, TextDelta):
                    await _call(on_chunk, event.text)
                elif isinstance(event, StreamDone):
                    await _call(on_done, event.result)
                elif isinstance(event, StreamError):
                    error = event.error
        except Exception as e:
            self.log.error("AI", f"Stream callback failed: {e}")
            error = e
        finally:
            await events.aclose()
        if error is not None:
            await _call(on_error, error)

    def abort(self) -> int:
        """Cancel every in-flight request. Returns how many were cancelled."""
        return self.requests.abort_all()

    def in_flight(self) -> int:
        return self.requests.count()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self, provider: str | None = None) -> list[str]:
        config = self.provider_config(provider)
        self.log.info("AI", f"Listing models for {config.name}...")
        try:
            models = await self._adapter(config).list_models()
        except Exception as e:
            self.log.error("AI", f"Listing models for {config.name} failed: {e}")
            raise
        self.log.info("AI", f"{config.name}: {len(models)} models found")
        return models

    # ------------------------------------------------------------------
    # Speech to text
    # ------------------------------------------------------------------

    def _stt_key(self, key_source: str | None, api_key: str | None) -> str:
        """Resolve the STT key, borrowing a chat provider's key unless ``custom``."""
        if key_source and key_source != "custom":
            return self.provider_config(key_source).api_key
        return api_key or ""

    def stt_config(self, overrides: dict[str, Any] | None = None) -> SttConfig:
        stt_settings = self.store.get("stt_settings") or {}
        stt_settings.update({k: v for k, v in (overrides or {}).items() if v is not None})
        stt_settings["api_key"] = self._stt_key(stt_settings.get("key_source"), stt_settings.get("api_key"))
        return SttConfig.from_dict(stt_settings)

    async def list_stt_models(
        self,
        provider: str,
        api_key: str | None = None,
        base_url: str | None = None,
        key_source: str | None = None,
    ) -> list[str]:
        key = self._stt_key(key_source, api_key)
        return await self.speech.list_models(provider, key, base_url or "")

    async def transcribe(
        self, audio: bytes, mime_type: str = "audio/webm", stt: dict[str, Any] | None = None
    ) -> str:
        """Transcribe recorded audio with the stored STT settings (plus overrides)."""
        try:
            return await self.speech.transcribe(audio, mime_type, self.stt_config(stt))
        except RequestAborted as e:
            self.log.warn("AI", f"Transcription cancelled: {e}")
            raise
        except Exception as e:
            self.log.error("AI", f"Transcription failed: {e}")
            raise

    # ------------------------------------------------------------------
    # Prompt helpers
    # ------------------------------------------------------------------

    async def summarize(
        self, page_text: str, title: str, url: str, provider: str | None = None
    ) -> ChatResult:
        """Summarize a page's text."""
        messages = [
            ChatMessage("system", prompts.SUMMARIZE_PROMPT),
            ChatMessage("user", prompts.SUMMARIZE_TEMPLATE.format(title=title, url=url, text=page_text)),
        ]
        return await self.chat(messages, provider)

    async def execute_task(self, task: str, provider: str | None = None) -> ChatResult:
        """Ask the model to break a task into automation commands."""
        messages = [
            ChatMessage("system", prompts.TASK_PROMPT),
            ChatMessage("user", prompts.TASK_TEMPLATE.format(task=task)),
        ]
        return await self.chat(messages, provider)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
