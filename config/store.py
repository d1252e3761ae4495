"""Key/value settings store.

The AI service only ever reads and writes whole keys (``ai_settings``,
``stt_settings``); how they are persisted is up to the store.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class SettingsStore(Protocol):
    """Minimal get/set interface consumed by the AI service."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


def _seed(settings: Settings) -> dict[str, Any]:
    return {
        "ai_settings": settings.default_ai_settings(),
        "stt_settings": settings.default_stt_settings(),
    }


class MemorySettingsStore:
    """In-process store, seeded from :class:`Settings` defaults."""

    def __init__(self, initial: dict[str, Any] | None = None, settings: Settings | None = None):
        self._data = _seed(settings or get_settings())
        if initial:
            self._data.update(copy.deepcopy(initial))

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class JsonSettingsStore(MemorySettingsStore):
    """Store persisted as a single JSON document under the data directory."""

    def __init__(self, path: str | Path | None = None, settings: Settings | None = None):
        settings = settings or get_settings()
        self.path = Path(path) if path else settings.data_dir / "settings.json"
        saved: dict[str, Any] = {}
        if self.path.exists():
            try:
                saved = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
        super().__init__(saved, settings=settings)

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
