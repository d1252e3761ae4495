"""
browser/browser.py
------------------
Wayfarer – Browser session

`BrowserSession` launches Chromium and exposes its active tab as a
:class:`browser.page.PageHandle` (``session.page``) for the automation layer.

Backend priority
----------------
1. Playwright (python-playwright), CDP through ``new_cdp_session``
2. CDP direct (browser/cdp.py): a ``ChromeProcess`` plus a websocket session

Usage
-----
    from browser import BrowserSession

    async with BrowserSession(headless=True) as browser:
        await browser.page.navigate("https://example.com")
        title = await browser.page.evaluate("document.title")
"""

from __future__ import annotations

import importlib.util
import logging
from typing import Optional

from config.settings import Settings, get_settings

from .cdp import CDPPage, CDPSession, ChromeProcess
from .page import PageHandle, PlaywrightPage

logger = logging.getLogger("wayfarer.browser")


def _playwright_available() -> bool:
    return importlib.util.find_spec("playwright") is not None


# ---------------------------------------------------------------------------
# BrowserSession
# ---------------------------------------------------------------------------

class BrowserSession:
    """
    Owns one Chromium instance and its single automated tab.

    Parameters
    ----------
    headless       : bool   launch without a visible window
    port           : int    CDP debugging port for the direct backend
    executable     : str    path to Chromium/Chrome binary (auto-detected)
    user_data_dir  : str    profile directory
    use_playwright : bool   prefer Playwright if installed
    start_url      : str    first page to open
    """

    def __init__(
        self,
        headless: bool = False,
        port: int = 9222,
        executable: str = "",
        user_data_dir: str = "",
        use_playwright: bool = True,
        start_url: str = "about:blank",
    ):
        self.headless      = headless
        self.port          = port
        self.executable    = executable
        self.user_data_dir = user_data_dir
        self.start_url     = start_url

        self._use_pw = use_playwright and _playwright_available()

        # Playwright handles
        self._pw         = None
        self._pw_browser = None
        self._pw_context = None

        # CDP handles
        self._chrome: Optional[ChromeProcess] = None
        self._cdp:    Optional[CDPSession]    = None

        self._page: Optional[PageHandle] = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BrowserSession":
        settings = settings or get_settings()
        return cls(
            headless=settings.browser_headless,
            port=settings.browser_port,
            executable=settings.browser_executable,
            user_data_dir=settings.browser_user_data_dir,
            use_playwright=settings.browser_use_playwright,
            start_url=settings.browser_start_url,
        )

    @property
    def page(self) -> Optional[PageHandle]:
        """The active tab, or None before launch / after close."""
        return self._page

    @property
    def backend(self) -> str:
        return "playwright" if self._use_pw else "cdp"

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "BrowserSession":
        await self.launch()
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def launch(self) -> None:
        if self._page is not None:
            return
        if self._use_pw:
            await self._launch_playwright()
        else:
            await self._launch_cdp()

    async def close(self) -> None:
        self._page = None
        if self._use_pw:
            await self._close_playwright()
        else:
            await self._close_cdp()

    async def _launch_playwright(self) -> None:
        from playwright.async_api import async_playwright

        self._pw = await async_playwright().start()
        launch_args = {"headless": self.headless}
        if self.executable:
            launch_args["executable_path"] = self.executable
        self._pw_browser = await self._pw.chromium.launch(**launch_args)
        self._pw_context = await self._pw_browser.new_context()
        pw_page = await self._pw_context.new_page()
        self._page = PlaywrightPage(pw_page)
        if self.start_url and self.start_url != "about:blank":
            await self._page.navigate(self.start_url)
        logger.info("[Browser] Playwright Chromium launched.")

    async def _close_playwright(self) -> None:
        if self._pw_browser:
            await self._pw_browser.close()
            self._pw_browser = None
        if self._pw:
            await self._pw.stop()
            self._pw = None

    async def _launch_cdp(self) -> None:
        self._chrome = ChromeProcess(
            executable=self.executable,
            port=self.port,
            user_data_dir=self.user_data_dir,
            headless=self.headless,
            start_url=self.start_url,
        )
        self._chrome.launch()
        await self._chrome.wait_ready(timeout=15)
        self._cdp = CDPSession(port=self.port)
        await self._cdp.attach()
        self._page = CDPPage(self._cdp)
        logger.info("[Browser] CDP session connected (port %d).", self.port)

    async def _close_cdp(self) -> None:
        if self._cdp:
            await self._cdp.close()
            self._cdp = None
        if self._chrome:
            self._chrome.terminate()
            self._chrome = None
