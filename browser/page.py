"""
browser/page.py
---------------
Wayfarer – Page handle abstraction

The action executor never talks to Playwright or a raw CDP socket directly.
It works against :class:`PageHandle`:

    navigate(url)          load a URL and wait for it
    evaluate(script)       run a JS expression, return its JSON value
    capture_image()        PNG bytes of the viewport
    debugger.attach()      open the DevTools protocol channel
    debugger.send(m, p)    issue one protocol command

Two implementations ship: :class:`PlaywrightPage` here and
:class:`browser.cdp.CDPPage` over the bare websocket client.
"""

from __future__ import annotations

import logging
import struct
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from playwright.async_api import CDPSession as PlaywrightCDPSession
    from playwright.async_api import Page

logger = logging.getLogger("wayfarer.browser.page")


@runtime_checkable
class DebuggerChannel(Protocol):
    async def attach(self) -> None: ...

    async def send(self, method: str, params: dict | None = None) -> Any: ...


@runtime_checkable
class PageHandle(Protocol):
    debugger: DebuggerChannel

    async def navigate(self, url: str) -> None: ...

    async def evaluate(self, script: str) -> Any: ...

    async def capture_image(self) -> bytes: ...


def png_size(data: bytes) -> tuple[int, int]:
    """Width and height from a PNG header, or (0, 0) if it isn't one."""
    if len(data) < 24 or data[:8] != b"\x89PNG\r\n\x1a\n":
        return 0, 0
    width, height = struct.unpack(">II", data[16:24])
    return width, height


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

class PlaywrightDebugger:
    """DevTools channel backed by ``BrowserContext.new_cdp_session``."""

    def __init__(self, page: "Page"):
        self._page = page
        self._session: PlaywrightCDPSession | None = None

    async def attach(self) -> None:
        if self._session is not None:
            raise RuntimeError("Already attached to this page")
        self._session = await self._page.context.new_cdp_session(self._page)
        logger.debug("[Page] CDP session attached.")

    async def send(self, method: str, params: dict | None = None) -> Any:
        if self._session is None:
            raise RuntimeError("Debugger is not attached")
        return await self._session.send(method, params or {})

    async def detach(self) -> None:
        if self._session is not None:
            await self._session.detach()
            self._session = None


class PlaywrightPage:
    """:class:`PageHandle` over a Playwright ``Page``."""

    def __init__(self, page: "Page"):
        self.page = page
        self.debugger = PlaywrightDebugger(page)

    async def navigate(self, url: str) -> None:
        logger.info("[Page] Navigating to %s", url)
        await self.page.goto(url, wait_until="load", timeout=30_000)

    async def evaluate(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def capture_image(self) -> bytes:
        return await self.page.screenshot(type="png")
