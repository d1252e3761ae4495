"""
browser/controller.py
---------------------
Wayfarer – Automation surface

:class:`AutomationController` is what the server, the CLI and the runner
call. Every method returns a payload dict on success or ``{"error": str}``
on failure; nothing raises across this boundary.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Awaitable, Callable, Optional

from config.settings import Settings, get_settings

from . import scripts
from .automation import BrowserAutomation
from .page import PageHandle, png_size

logger = logging.getLogger("wayfarer.browser.controller")

NO_PAGE = "No active tab"

PageGetter = Callable[[], Optional[PageHandle]]


class AutomationController:
    def __init__(
        self,
        get_page: PageGetter,
        automation: BrowserAutomation | None = None,
        settings: Settings | None = None,
    ):
        self._get_page = get_page
        self.automation = automation or BrowserAutomation()
        self.wait_cap = (settings or get_settings()).automation_wait_cap

    @property
    def page(self) -> Optional[PageHandle]:
        return self._get_page()

    async def _guard(
        self, action: str, work: Callable[[PageHandle], Awaitable[Any]]
    ) -> dict:
        page = self._get_page()
        if page is None:
            return {"error": NO_PAGE}
        try:
            return await work(page)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[Browser] %s failed: %s", action, e)
            return {"error": str(e)}

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def click(self, x: int, y: int) -> dict:
        async def work(page):
            await self.automation.highlight(page, x, y)
            await self.automation.pause(150)
            return await self.automation.click(page, x, y)

        return await self._guard("click", work)

    async def type(self, text: str, delay: int = 50) -> dict:
        return await self._guard(
            "type", lambda page: self.automation.type(page, text, delay=delay)
        )

    async def press_key(self, key: str, modifiers=()) -> dict:
        return await self._guard(
            "press_key", lambda page: self.automation.press_key(page, key, modifiers)
        )

    async def scroll(self, x: int, y: int, delta_x: int = 0, delta_y: int = 0) -> dict:
        return await self._guard(
            "scroll", lambda page: self.automation.scroll(page, x, y, delta_x, delta_y)
        )

    async def click_element(self, selector: str) -> dict:
        async def work(page):
            result = await self.automation.click_element(page, selector)
            await self.automation.highlight(page, result["x"], result["y"])
            return result

        return await self._guard("click_element", work)

    async def fill_input(self, selector: str, value: str) -> dict:
        return await self._guard(
            "fill_input", lambda page: self.automation.fill_input(page, selector, value)
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def screenshot(self) -> dict:
        async def work(page):
            data = await page.capture_image()
            width, height = png_size(data)
            return {
                "image": "data:image/png;base64," + base64.b64encode(data).decode(),
                "width": width,
                "height": height,
            }

        return await self._guard("screenshot", work)

    async def get_elements(self, selector: str) -> dict:
        async def work(page):
            return {"elements": await page.evaluate(scripts.query_elements(selector)) or []}

        return await self._guard("get_elements", work)

    async def find_interactive(self) -> dict:
        async def work(page):
            return {"elements": await page.evaluate(scripts.interactive_elements()) or []}

        return await self._guard("find_interactive", work)

    async def get_page_content(self) -> dict:
        async def work(page):
            return await page.evaluate(scripts.page_content()) or {"text": "", "title": "", "url": ""}

        return await self._guard("get_page_content", work)

    async def evaluate(self, script: str) -> dict:
        async def work(page):
            return {"result": await page.evaluate(script)}

        return await self._guard("evaluate", work)

    # ------------------------------------------------------------------
    # Navigation and timing
    # ------------------------------------------------------------------

    async def navigate(self, url: str) -> dict:
        async def work(page):
            await page.navigate(url)
            return {"success": True, "url": url}

        return await self._guard("navigate", work)

    async def wait(self, ms: int) -> dict:
        waited = max(0, min(ms, int(self.wait_cap * 1000)))
        await self.automation.pause(waited)
        return {"success": True, "waited": waited}

    # ------------------------------------------------------------------
    # Overlay
    # ------------------------------------------------------------------

    async def show_overlay(self, label: str = "AI is in control") -> dict:
        return await self._guard(
            "show_overlay", lambda page: self._overlay(page, scripts.show_overlay(label))
        )

    async def hide_overlay(self) -> dict:
        return await self._guard(
            "hide_overlay", lambda page: self._overlay(page, scripts.hide_overlay())
        )

    @staticmethod
    async def _overlay(page: PageHandle, script: str) -> dict:
        await page.evaluate(script)
        return {"success": True}
