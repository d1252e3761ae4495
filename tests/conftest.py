"""
Shared pytest fixtures for all tests.
"""
import struct
from typing import Any, Callable

import httpx
import pytest

from browser.automation import BrowserAutomation
from browser.controller import AutomationController
from config.settings import Settings
from config.store import MemorySettingsStore
from src.llm.service import AIService

PNG_800x600 = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + struct.pack(">II", 800, 600) + b"\x08\x02\x00\x00\x00"


class FakeDebugger:
    """Records protocol commands; can be told to fail."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.attach_calls = 0
        self.attach_error: Exception | None = None
        self.fail_on: set[str] = set()

    async def attach(self) -> None:
        self.attach_calls += 1
        if self.attach_error is not None:
            raise self.attach_error

    async def send(self, method: str, params: dict | None = None) -> Any:
        if method in self.fail_on or "*" in self.fail_on:
            raise RuntimeError(f"{method} unavailable")
        self.sent.append((method, params or {}))
        return {}

    def methods(self) -> list[str]:
        return [method for method, _ in self.sent]


class FakePage:
    """Page handle whose evaluate() answers by script substring."""

    def __init__(self):
        self.debugger = FakeDebugger()
        self.scripts: list[str] = []
        self.navigations: list[str] = []
        self.answers: list[tuple[str, Any]] = []
        self.image = PNG_800x600

    def answer(self, marker: str, value: Any) -> None:
        """Make evaluate() return ``value`` for scripts containing ``marker``."""
        self.answers.insert(0, (marker, value))

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)

    async def evaluate(self, script: str) -> Any:
        self.scripts.append(script)
        for marker, value in self.answers:
            if marker in script:
                if isinstance(value, Exception):
                    raise value
                return value(script) if callable(value) else value
        return True

    async def capture_image(self) -> bytes:
        if isinstance(self.image, Exception):
            raise self.image
        return self.image


class InstantAutomation(BrowserAutomation):
    """BrowserAutomation that records pauses instead of sleeping."""

    def __init__(self):
        super().__init__()
        self.pauses: list[float] = []

    async def pause(self, ms: float) -> None:
        self.pauses.append(ms)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_path=str(tmp_path),
        automation_warmup=0,
        automation_settle=0,
        automation_linger=0,
    )


@pytest.fixture
def store(settings):
    return MemorySettingsStore(
        {
            "ai_settings": {
                "active_provider": "openai",
                "providers": {
                    "openai": {"api_key": "sk-test", "model": "gpt-4o", "base_url": "https://api.openai.test/v1"},
                    "anthropic": {"api_key": "sk-ant-test", "model": "claude-test", "base_url": "https://api.anthropic.test"},
                    "gemini": {"api_key": "g-key", "model": "gemini-2.0-flash", "base_url": "https://gemini.test/v1beta"},
                    "ollama": {"api_key": "", "model": "llama3.2", "base_url": "http://localhost:11434"},
                    "lmstudio": {"api_key": "", "model": "local-model", "base_url": "http://localhost:1234/v1"},
                    "custom": {"api_key": "c-key", "model": "c-model", "base_url": "https://custom.test/v1"},
                },
            }
        },
        settings=settings,
    )


@pytest.fixture
def make_service(store, settings):
    """Factory for AIService instances backed by an httpx.MockTransport."""
    created: list[AIService] = []

    def _create(handler: Callable[[httpx.Request], Any], sink=None) -> AIService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = AIService(store=store, settings=settings, client=client, on_log=sink)
        created.append(service)
        return service

    return _create


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def automation():
    return InstantAutomation()


@pytest.fixture
def controller(page, automation, settings):
    return AutomationController(lambda: page, automation=automation, settings=settings)


def sse(*payloads: str) -> bytes:
    """Frame payload strings as ``data:`` lines."""
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


async def chunked(data: bytes, size: int):
    for i in range(0, len(data), size):
        yield data[i:i + size]
