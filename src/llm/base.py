"""Abstract base class for LLM providers."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, ClassVar

import httpx

from src.devlog import DevLog
from src.llm.errors import BackendError, ConfigurationError, ProviderConnectionError
from src.llm.streaming import Dialect, StreamError, TextDelta, iter_stream_events

if TYPE_CHECKING:
    from src.llm.lifecycle import RequestLifecycleManager

logger = logging.getLogger(__name__)

LOCAL_PROVIDERS = frozenset({"ollama", "lmstudio"})

_DATA_URL = re.compile(r"^data:([\w/+.-]+);base64,")


@dataclass(frozen=True)
class ProviderConfig:
    """Where and how to reach one backend."""

    name: str
    base_url: str
    model: str
    api_key: str = ""

    @property
    def is_local(self) -> bool:
        return self.name in LOCAL_PROVIDERS

    @property
    def root_url(self) -> str:
        return self.base_url.rstrip("/")


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation, optionally carrying an image."""

    role: str
    content: str
    image: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        if "role" not in data:
            raise ValueError(f"Message must have 'role': {data}")
        return cls(role=data["role"], content=data.get("content") or "", image=data.get("image"))

    def to_dict(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.image:
            msg["image"] = self.image
        return msg

    @property
    def image_base64(self) -> str | None:
        """Image payload with any ``data:image/...;base64,`` prefix removed."""
        if not self.image:
            return None
        return _DATA_URL.sub("", self.image)

    @property
    def image_mime_type(self) -> str:
        match = _DATA_URL.match(self.image or "")
        return match.group(1) if match else "image/png"

    @property
    def image_data_url(self) -> str | None:
        if not self.image:
            return None
        if _DATA_URL.match(self.image):
            return self.image
        return f"data:image/png;base64,{self.image}"


@dataclass
class ChatResult:
    """Standardized response from any LLM provider."""

    content: str
    model: str
    provider: str
    usage: dict[str, Any] | None = None

    @property
    def input_tokens(self) -> int:
        usage = self.usage or {}
        return usage.get("input_tokens", usage.get("prompt_tokens", usage.get("promptTokenCount", 0)))

    @property
    def output_tokens(self) -> int:
        usage = self.usage or {}
        return usage.get(
            "output_tokens", usage.get("completion_tokens", usage.get("candidatesTokenCount", 0))
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "provider": self.provider,
            "usage": self.usage,
        }


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    One adapter per backend family. Adapters shape the wire request, run it
    under a handle from the shared :class:`RequestLifecycleManager` and turn
    the backend's reply into a :class:`ChatResult` or a stream of text
    fragments.
    """

    display_name: ClassVar[str] = "Provider"
    start_hint: ClassVar[str | None] = None

    temperature: ClassVar[float] = 0.7
    max_tokens: ClassVar[int] = 4096

    def __init__(
        self,
        config: ProviderConfig,
        requests: "RequestLifecycleManager",
        client: httpx.AsyncClient | None = None,
        log: DevLog | None = None,
        chat_timeout: float = 120.0,
        list_timeout: float = 15.0,
    ):
        """Initialize the adapter.

        Args:
            config: Backend coordinates and credentials
            requests: Shared registry of cancellable in-flight requests
            client: HTTP client; a private one is created when omitted
            log: Developer log sink
            chat_timeout: Deadline for chat and streaming calls, in seconds
            list_timeout: Deadline for model listing, in seconds
        """
        self.config = config
        self._requests = requests
        self._owns_client = client is None
        # Deadlines are enforced by the request handles, not by httpx
        self._client = client or httpx.AsyncClient(timeout=None)
        self._log = log or DevLog()
        self.chat_timeout = chat_timeout
        self.list_timeout = list_timeout

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def current_model(self) -> str:
        return self.config.model

    @abstractmethod
    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Send a chat completion request.

        Args:
            messages: Conversation in order; may include system turns

        Returns:
            ChatResult with the generated content
        """

    @abstractmethod
    def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat completion response.

        Args:
            messages: Conversation in order

        Yields:
            String chunks of the response
        """

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return the model identifiers the backend offers, sorted."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the configuration before any I/O.

        Raises:
            ConfigurationError: When a required field is missing
        """
        validate_provider(self.config, self._log)

    def check_status(self, response: httpx.Response, truncate: int | None = None) -> None:
        """Raise :class:`BackendError` for a non-success response.

        The body must already be read (``await response.aread()`` for streams).
        """
        if response.is_success:
            return
        body = response.text
        if truncate is not None:
            body = body[:truncate]
        raise BackendError(self.display_name, response.status_code, body)

    def raise_for_connection(self, err: httpx.TransportError) -> None:
        """Rewrite a refused or reset connection to a local server.

        Raises :class:`ProviderConnectionError` naming the app to start; returns
        normally when ``err`` should propagate untouched.
        """
        if not self.config.is_local or not self.start_hint:
            return
        if not isinstance(err, (httpx.ConnectError, httpx.ReadError)):
            return
        raise ProviderConnectionError(
            f"Cannot connect to {self.display_name} at {self.config.base_url}. "
            f"Please start {self.start_hint} and try again."
        ) from err

    async def relay_stream(self, response: httpx.Response, dialect: Dialect) -> AsyncIterator[str]:
        """Yield the text fragments of an open streaming response."""
        if not response.is_success:
            await response.aread()
            self.check_status(response)
        async for event in iter_stream_events(response.aiter_bytes(), dialect):
            if isinstance(event, TextDelta):
                yield event.text
            elif isinstance(event, StreamError):
                raise event.error

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()


def validate_provider(config: ProviderConfig, log: DevLog | None = None) -> None:
    """Validate a provider configuration without touching the network.

    Raises:
        ConfigurationError: Missing key (remote backends), base URL or model
    """
    if not config.is_local and not config.api_key:
        raise ConfigurationError(
            f"No API key configured for {config.name}. Please add your API key in Settings."
        )
    if config.name == "anthropic" and not config.api_key.startswith("sk-ant-"):
        (log or DevLog()).warn(
            "AI", "Anthropic API key does not start with sk-ant-; it may be invalid",
            {"provider": config.name},
        )
    if not config.base_url:
        raise ConfigurationError(
            f"No base URL configured for {config.name}. Please check Settings."
        )
    if not config.model:
        raise ConfigurationError(
            f"No model specified for {config.name}. Please check Settings."
        )
