"""Developer log sink shared by the AI service and the automation runner."""

from __future__ import annotations

import logging
from typing import Any, Callable

LogSink = Callable[[str, str, str, "dict[str, Any] | None"], None]

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class DevLog:
    """Structured ``(level, category, message, data)`` log events.

    Every event goes to stdlib logging under ``wayfarer.<category>`` and then to
    the optional ``sink`` (a UI log panel, the SSE feed, a test spy). Logging
    is best-effort: a failing sink never disturbs the caller.
    """

    def __init__(self, sink: LogSink | None = None):
        self.sink = sink

    def __call__(
        self,
        level: str,
        category: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        logger = logging.getLogger(f"wayfarer.{category.lower()}")
        if data:
            logger.log(_LEVELS.get(level, logging.INFO), "%s %s", message, data)
        else:
            logger.log(_LEVELS.get(level, logging.INFO), "%s", message)

        if self.sink is None:
            return
        try:
            self.sink(level, category, message, data)
        except Exception:
            pass

    def info(self, category: str, message: str, data: dict[str, Any] | None = None) -> None:
        self("info", category, message, data)

    def warn(self, category: str, message: str, data: dict[str, Any] | None = None) -> None:
        self("warn", category, message, data)

    def error(self, category: str, message: str, data: dict[str, Any] | None = None) -> None:
        self("error", category, message, data)

    def debug(self, category: str, message: str, data: dict[str, Any] | None = None) -> None:
        self("debug", category, message, data)
