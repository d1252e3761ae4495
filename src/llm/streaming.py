"""Incremental decoding of streamed chat responses.

Backends stream either Server-Sent Events (``data: {...}`` lines) or
newline-delimited JSON. Bytes arrive in arbitrary chunks, so the decoder
buffers partial lines and multi-byte characters between reads; the text it
produces is the same however the body was split.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterable, AsyncIterator, Callable

if TYPE_CHECKING:
    from src.llm.base import ChatResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    """A fragment of generated text, in arrival order."""

    text: str


@dataclass(frozen=True)
class StreamDone:
    """Normal end of a stream; the service attaches the assembled result."""

    result: ChatResult | None = None


@dataclass(frozen=True)
class StreamError:
    """Abnormal end of a stream."""

    error: BaseException
    aborted: bool = False


StreamEvent = TextDelta | StreamDone | StreamError


@dataclass(frozen=True)
class Dialect:
    """How one backend family frames its stream.

    Attributes:
        name: Label used in logs
        prefix: Line prefix carrying a payload (``"data:"``), or ``None`` for NDJSON
        extract: Pull the text fragment out of a decoded payload
        is_done: Whether a decoded payload marks the end of the stream
        sentinel: Raw payload that ends the stream before JSON decoding
    """

    name: str
    prefix: str | None
    extract: Callable[[Any], str | None]
    is_done: Callable[[Any], bool] = lambda payload: False
    sentinel: str | None = None


def _dig(payload: Any, *path: Any) -> Any:
    node = payload
    for key in path:
        try:
            node = node[key]
        except (KeyError, IndexError, TypeError):
            return None
    return node


def _openai_text(payload: Any) -> str | None:
    return _dig(payload, "choices", 0, "delta", "content")


def _anthropic_text(payload: Any) -> str | None:
    if _dig(payload, "type") == "content_block_delta" and _dig(payload, "delta", "type") == "text_delta":
        return _dig(payload, "delta", "text")
    return None


def _gemini_text(payload: Any) -> str | None:
    parts = _dig(payload, "candidates", 0, "content", "parts")
    if not isinstance(parts, list):
        return None
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict)) or None


def _ollama_text(payload: Any) -> str | None:
    return _dig(payload, "message", "content")


OPENAI_SSE = Dialect("openai-sse", prefix="data:", extract=_openai_text, sentinel="[DONE]")

ANTHROPIC_SSE = Dialect(
    "anthropic-sse",
    prefix="data:",
    extract=_anthropic_text,
    is_done=lambda payload: _dig(payload, "type") == "message_stop",
)

# Gemini has no terminal marker; the stream ends with the response body.
GEMINI_SSE = Dialect("gemini-sse", prefix="data:", extract=_gemini_text)

OLLAMA_NDJSON = Dialect(
    "ollama-ndjson",
    prefix=None,
    extract=_ollama_text,
    is_done=lambda payload: _dig(payload, "done") is True,
)


class StreamDecoder:
    """Turns raw body chunks into text fragments for a given dialect."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes | str) -> list[str]:
        """Consume one chunk and return the fragments completed by it."""
        if self.done:
            return []
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def finish(self) -> list[str]:
        """Flush whatever is left once the body has ended."""
        if self.done:
            return []
        tail = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        fragments = self._parse_lines([tail])
        self.done = True
        return fragments

    def _parse_lines(self, lines: list[str]) -> list[str]:
        fragments: list[str] = []
        for line in lines:
            if self.done:
                break
            text = self._parse_line(line.strip())
            if text:
                fragments.append(text)
        return fragments

    def _parse_line(self, line: str) -> str | None:
        if not line:
            return None

        dialect = self.dialect
        if dialect.prefix is not None:
            if not line.startswith(dialect.prefix):
                return None
            line = line[len(dialect.prefix):].strip()
            if dialect.sentinel is not None and line == dialect.sentinel:
                self.done = True
                return None

        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed {dialect.name} line: {line[:80]!r}")
            return None

        text = dialect.extract(payload)
        if dialect.is_done(payload):
            self.done = True
        return text if isinstance(text, str) else None


async def iter_stream_events(
    chunks: AsyncIterable[bytes],
    dialect: Dialect,
) -> AsyncIterator[StreamEvent]:
    """Decode a streamed body into events.

    Yields :class:`TextDelta` fragments in arrival order, followed by exactly
    one :class:`StreamDone` or :class:`StreamError`. Read failures become the
    error event; task cancellation is not intercepted.
    """
    decoder = StreamDecoder(dialect)
    try:
        async for chunk in chunks:
            for text in decoder.feed(chunk):
                yield TextDelta(text)
            if decoder.done:
                break
        for text in decoder.finish():
            yield TextDelta(text)
    except Exception as e:
        yield StreamError(e)
        return
    yield StreamDone()
