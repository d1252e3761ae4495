"""
browser/automation.py
---------------------
Wayfarer – Protocol-level input injection with DOM-script fallbacks

Each action first tries the DevTools protocol (``Input.dispatchMouseEvent``,
``Input.dispatchKeyEvent``, ``Input.insertText``), which the page cannot tell
apart from real input. If the protocol path raises, the matching script from
:mod:`browser.scripts` runs instead. A failing fallback propagates its own
error; the protocol error is only logged.

The debugger channel is attached lazily, once per page.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any

from browser import scripts
from browser.page import PageHandle

logger = logging.getLogger("wayfarer.browser.automation")


class ElementError(RuntimeError):
    """A selector-based action could not act on its element."""


class ElementNotFound(ElementError):
    pass


class ElementNotVisible(ElementError):
    pass


# ---------------------------------------------------------------------------
# Key table
# ---------------------------------------------------------------------------

# name -> (code, keyCode, text)
KEY_MAP: dict[str, tuple[str, int, str]] = {
    "Enter":      ("Enter", 13, "\r"),
    "Tab":        ("Tab", 9, ""),
    "Escape":     ("Escape", 27, ""),
    "Backspace":  ("Backspace", 8, ""),
    "Delete":     ("Delete", 46, ""),
    "ArrowUp":    ("ArrowUp", 38, ""),
    "ArrowDown":  ("ArrowDown", 40, ""),
    "ArrowLeft":  ("ArrowLeft", 37, ""),
    "ArrowRight": ("ArrowRight", 39, ""),
    "Space":      ("Space", 32, " "),
    "Home":       ("Home", 36, ""),
    "End":        ("End", 35, ""),
    "PageUp":     ("PageUp", 33, ""),
    "PageDown":   ("PageDown", 34, ""),
}

MODIFIER_BITS = {
    "alt": 1,
    "ctrl": 2,
    "control": 2,
    "meta": 4,
    "cmd": 4,
    "shift": 8,
}


def resolve_key(key: str) -> tuple[str, str, int, str]:
    """Return ``(key, code, keyCode, text)`` for a named or literal key."""
    if key in KEY_MAP:
        code, key_code, text = KEY_MAP[key]
        return (" " if key == "Space" else key), code, key_code, text
    if len(key) == 1:
        upper = key.upper()
        code = f"Key{upper}" if upper.isalpha() else (f"Digit{key}" if key.isdigit() else key)
        return key, code, ord(upper), key
    return key, key, 0, ""


def modifier_mask(modifiers) -> int:
    mask = 0
    for name in modifiers or ():
        mask |= MODIFIER_BITS.get(name.lower(), 0)
    return mask


def _normalise_modifiers(modifiers) -> set[str]:
    names = set()
    for name in modifiers or ():
        name = name.lower()
        if name == "control":
            name = "ctrl"
        elif name == "cmd":
            name = "meta"
        names.add(name)
    return names


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class BrowserAutomation:
    """Drives one or more pages; holds the per-page attach cache."""

    def __init__(self):
        self._attached: weakref.WeakSet = weakref.WeakSet()

    async def pause(self, ms: float) -> None:
        await asyncio.sleep(ms / 1000)

    async def _ensure_debugger(self, page: PageHandle) -> None:
        if page in self._attached:
            return
        try:
            await page.debugger.attach()
        except Exception as e:
            if "Already attached" not in str(e):
                raise
        self._attached.add(page)
        logger.debug("[Browser] Debugger attached.")

    async def _send(self, page: PageHandle, method: str, params: dict) -> Any:
        await self._ensure_debugger(page)
        return await page.debugger.send(method, params)

    async def _mouse(self, page: PageHandle, kind: str, x: float, y: float, **extra) -> None:
        params = {"type": kind, "x": x, "y": y}
        if kind != "mouseMoved":
            params.update(button="left", clickCount=1)
        params.update(extra)
        await self._send(page, "Input.dispatchMouseEvent", params)

    # ------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------

    async def click(self, page: PageHandle, x: int, y: int) -> dict:
        try:
            await self._mouse(page, "mouseMoved", x, y)
            await self.pause(30)
            await self._mouse(page, "mousePressed", x, y)
            await self.pause(50)
            await self._mouse(page, "mouseReleased", x, y)
            await self.pause(50)
            return {"success": True, "x": x, "y": y}
        except Exception as e:
            logger.debug("[Browser] CDP click failed, using DOM events: %s", e)
        clicked = await page.evaluate(scripts.click_at_point(x, y))
        return {"success": True, "x": x, "y": y, "element": clicked}

    async def move_mouse(self, page: PageHandle, x: int, y: int) -> dict:
        try:
            await self._mouse(page, "mouseMoved", x, y)
        except Exception as e:
            logger.debug("[Browser] CDP mouse move failed: %s", e)
            await page.evaluate(scripts.hover_at_point(x, y))
        return {"success": True}

    async def click_element(self, page: PageHandle, selector: str) -> dict:
        info = await page.evaluate(scripts.locate_element(selector))
        if not info or info.get("error"):
            raise ElementNotFound((info or {}).get("error") or f"Element not found: {selector}")
        if not info.get("visible"):
            raise ElementNotVisible(f'Element "{selector}" is not visible or has zero size')

        x, y = info["x"], info["y"]
        await self.pause(150)
        try:
            await self._mouse(page, "mouseMoved", x, y)
            await self.pause(20)
            await self._mouse(page, "mousePressed", x, y)
            await self.pause(50)
            await self._mouse(page, "mouseReleased", x, y)
        except Exception as e:
            logger.debug("[Browser] CDP element click failed, using DOM events: %s", e)
            if not await page.evaluate(scripts.click_selector(selector)):
                raise ElementNotFound(f"Element not found: {selector}")
        return {"success": True, "tag": info.get("tag"), "x": x, "y": y}

    async def scroll(
        self,
        page: PageHandle,
        x: int,
        y: int,
        delta_x: int = 0,
        delta_y: int = 0,
    ) -> dict:
        try:
            await self._mouse(page, "mouseWheel", x, y, deltaX=delta_x, deltaY=delta_y)
            await self.pause(100)
        except Exception as e:
            logger.debug("[Browser] CDP wheel failed, using scrollBy: %s", e)
            await page.evaluate(scripts.scroll_by(delta_x, delta_y))
        return {"success": True}

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    async def type(self, page: PageHandle, text: str, delay: int = 30) -> dict:
        try:
            for char in text:
                await self._send(page, "Input.insertText", {"text": char})
                if delay:
                    await self.pause(delay)
            return {"success": True, "method": "cdp"}
        except Exception as e:
            logger.debug("[Browser] CDP insertText failed, writing value directly: %s", e)
        await page.evaluate(scripts.type_into_active(text))
        return {"success": True, "method": "js-fallback"}

    async def press_key(self, page: PageHandle, key: str, modifiers=()) -> dict:
        key_name, code, key_code, text = resolve_key(key)
        mask = modifier_mask(modifiers)
        base = {
            "key": key_name,
            "code": code,
            "windowsVirtualKeyCode": key_code,
            "nativeVirtualKeyCode": key_code,
            "modifiers": mask,
        }
        try:
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyDown", **base})
            await self.pause(30)
            if text and not mask & ~MODIFIER_BITS["shift"]:
                await self._send(page, "Input.dispatchKeyEvent", {"type": "char", "text": text, **base})
                await self.pause(10)
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyUp", **base})
            await self.pause(30)
            return {"success": True}
        except Exception as e:
            logger.debug("[Browser] CDP key event failed, using KeyboardEvent: %s", e)
        await page.evaluate(
            scripts.dispatch_key(key_name, code, key_code, _normalise_modifiers(modifiers))
        )
        return {"success": True}

    async def fill_input(self, page: PageHandle, selector: str, value: str) -> dict:
        prepared = await page.evaluate(scripts.prepare_fill(selector))
        if not prepared or prepared.get("error"):
            raise ElementNotFound((prepared or {}).get("error") or f"Element not found: {selector}")
        try:
            select_all = {
                "key": "a",
                "code": "KeyA",
                "windowsVirtualKeyCode": 65,
                "modifiers": MODIFIER_BITS["ctrl"],
            }
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyDown", **select_all})
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyUp", **select_all})
            backspace = {"key": "Backspace", "code": "Backspace", "windowsVirtualKeyCode": 8}
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyDown", **backspace})
            await self._send(page, "Input.dispatchKeyEvent", {"type": "keyUp", **backspace})
            await self._send(page, "Input.insertText", {"text": value})
            return {"success": True, "method": "cdp"}
        except Exception as e:
            logger.debug("[Browser] CDP fill failed, using native setter: %s", e)
        result = await page.evaluate(scripts.set_value(selector, value))
        if not result or result.get("error"):
            raise ElementNotFound((result or {}).get("error") or f"Element not found: {selector}")
        return result

    # ------------------------------------------------------------------
    # Visual feedback
    # ------------------------------------------------------------------

    async def highlight(self, page: PageHandle, x: int, y: int) -> None:
        """Flash a dot at the point; never raises."""
        try:
            await page.evaluate(scripts.highlight(x, y))
        except Exception as e:
            logger.debug("[Browser] highlight failed: %s", e)
