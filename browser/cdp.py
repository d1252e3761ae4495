"""
browser/cdp.py
--------------
Wayfarer – Chrome DevTools Protocol (CDP) client

A small async CDP client speaking JSON-RPC over the page target's WebSocket
(``websockets``). Used when Playwright is not wanted, and as the debugger
channel of :class:`CDPPage`.

Lifecycle
---------
1. ``ChromeProcess`` launches Chromium with ``--remote-debugging-port``
2. ``CDPSession.attach()`` discovers a page target via ``/json/list`` and
   opens the WebSocket; attaching twice raises "Already attached"
3. ``session.send(method, params)`` for any protocol command
4. ``session.close()`` when done
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import subprocess
import sys
import tempfile
from typing import Any, Callable, Coroutine

import httpx
import websockets

logger = logging.getLogger("wayfarer.browser.cdp")

_CDPCallback = Callable[[dict], Coroutine]


class CDPError(RuntimeError):
    """The browser answered a protocol command with an error."""


# ---------------------------------------------------------------------------
# Default Chromium locations
# ---------------------------------------------------------------------------

def _find_chromium() -> str:
    """Return the first Chromium / Chrome executable found on this system."""
    if sys.platform == "win32":
        candidates = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
            os.path.expandvars(r"%LOCALAPPDATA%\Google\Chrome\Application\chrome.exe"),
        ]
    else:
        candidates = [
            "/usr/bin/google-chrome",
            "/usr/bin/chromium-browser",
            "/usr/bin/chromium",
            "/snap/bin/chromium",
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    raise FileNotFoundError(
        "Chromium / Chrome not found. Install it or set WAYFARER_BROWSER_EXECUTABLE."
    )


# ---------------------------------------------------------------------------
# Browser process management
# ---------------------------------------------------------------------------

class ChromeProcess:
    """
    A dedicated Chromium instance with remote debugging enabled, using its
    own profile directory so it never touches the user's browser profile.
    """

    DEFAULT_PORT = 9222

    def __init__(
        self,
        executable: str = "",
        port: int = DEFAULT_PORT,
        user_data_dir: str = "",
        headless: bool = False,
        start_url: str = "about:blank",
    ):
        self.executable    = executable
        self.port          = port
        self.user_data_dir = user_data_dir or os.path.join(
            tempfile.gettempdir(), "wayfarer_chrome_profile"
        )
        self.headless      = headless
        self.start_url     = start_url
        self._proc: subprocess.Popen | None = None

    def launch(self) -> None:
        if self.is_running():
            return
        args = [
            self.executable or _find_chromium(),
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self.user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
        ]
        if self.headless:
            args.append("--headless=new")
        args.append(self.start_url)
        logger.info("[CDP] Launching Chromium: %s", " ".join(args))
        self._proc = subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

    def terminate(self) -> None:
        if not self.is_running():
            return
        self._proc.terminate()
        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._proc.kill()
        logger.info("[CDP] Chromium terminated.")

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    async def wait_ready(self, timeout: float = 15.0) -> None:
        """Poll ``/json/version`` until the browser answers."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        async with httpx.AsyncClient() as client:
            while loop.time() < deadline:
                try:
                    r = await client.get(f"http://localhost:{self.port}/json/version")
                    if r.status_code == 200:
                        return
                except httpx.TransportError:
                    pass
                await asyncio.sleep(0.25)
        raise TimeoutError(f"Chromium did not start within {timeout}s")


# ---------------------------------------------------------------------------
# CDP Session
# ---------------------------------------------------------------------------

class CDPSession:
    """
    Async CDP session bound to a single page target.

        session = CDPSession(port=9222)
        await session.attach()
        await session.navigate("https://example.com")
        title = await session.evaluate("document.title")
        await session.close()
    """

    def __init__(self, host: str = "localhost", port: int = 9222):
        self.host = host
        self.port = port
        self._ws: Any = None
        self._id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._listeners: dict[str, list[_CDPCallback]] = {}
        self._recv_task: asyncio.Task | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def attached(self) -> bool:
        return self._ws is not None

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    async def attach(self, target_filter: Callable[[dict], bool] | None = None) -> None:
        """Find a page target and open a WebSocket session to it."""
        if self.attached:
            raise RuntimeError("Already attached to this target")

        ws_url = await self._discover(target_filter)
        self._ws = await websockets.connect(ws_url, max_size=None)
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.info("[CDP] Connected to %s", ws_url)

    async def _discover(self, target_filter: Callable[[dict], bool] | None) -> str:
        async with httpx.AsyncClient() as client:
            for _ in range(20):
                try:
                    resp = await client.get(f"{self.base_url}/json/list")
                    for target in resp.json():
                        if target.get("type") != "page":
                            continue
                        if target_filter is None or target_filter(target):
                            return target["webSocketDebuggerUrl"]
                except (httpx.TransportError, ValueError) as e:
                    logger.debug("[CDP] target discovery retry: %s", e)
                await asyncio.sleep(0.25)
        raise RuntimeError("No Page target found in Chromium CDP endpoint.")

    async def close(self) -> None:
        if self._recv_task:
            self._recv_task.cancel()
            self._recv_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(CDPError("CDP session closed"))
        self._pending.clear()

    # ------------------------------------------------------------------
    # Send / receive
    # ------------------------------------------------------------------

    async def send(self, method: str, params: dict | None = None) -> Any:
        if self._ws is None:
            raise RuntimeError("Debugger is not attached")
        self._id += 1
        msg_id = self._id
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self._ws.send(json.dumps({"id": msg_id, "method": method, "params": params or {}}))
            result = await fut
        finally:
            self._pending.pop(msg_id, None)
        if "error" in result:
            raise CDPError(f"CDP error ({method}): {result['error'].get('message', result['error'])}")
        return result.get("result", {})

    async def _recv_loop(self) -> None:
        try:
            async for raw in self._ws:
                msg = json.loads(raw)
                if "id" in msg:
                    fut = self._pending.get(msg["id"])
                    if fut is not None and not fut.done():
                        fut.set_result(msg)
                elif "method" in msg:
                    await self._dispatch_event(msg["method"], msg.get("params", {}))
        except asyncio.CancelledError:
            pass
        except websockets.ConnectionClosed as exc:
            logger.warning("[CDP] connection closed: %s", exc)

    async def _dispatch_event(self, event: str, params: dict) -> None:
        for cb in list(self._listeners.get(event, [])):
            try:
                await cb(params)
            except Exception as e:
                logger.warning("[CDP] event handler error (%s): %s", event, e)

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------

    def on_event(self, event: str, callback: _CDPCallback) -> None:
        self._listeners.setdefault(event, []).append(callback)

    async def wait_for(
        self,
        event: str,
        predicate: Callable[[dict], bool] | None = None,
        timeout: float = 30.0,
    ) -> dict:
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        async def _handler(params: dict):
            if not fut.done() and (predicate is None or predicate(params)):
                fut.set_result(params)

        self.on_event(event, _handler)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            if _handler in self._listeners.get(event, []):
                self._listeners[event].remove(_handler)

    # ------------------------------------------------------------------
    # High-level helpers
    # ------------------------------------------------------------------

    async def navigate(self, url: str) -> None:
        """Navigate to URL and wait for the load event."""
        await self.send("Page.enable")
        loaded = asyncio.ensure_future(self.wait_for("Page.loadEventFired"))
        try:
            result = await self.send("Page.navigate", {"url": url})
            if result.get("errorText"):
                raise CDPError(f"Navigation to {url} failed: {result['errorText']}")
            await loaded
        finally:
            if not loaded.done():
                loaded.cancel()

    async def evaluate(self, expression: str) -> Any:
        """Evaluate JavaScript in the page context and return the result."""
        result = await self.send("Runtime.evaluate", {
            "expression": expression,
            "returnByValue": True,
            "awaitPromise": True,
        })
        exc = result.get("exceptionDetails")
        if exc:
            message = (exc.get("exception") or {}).get("description") or exc.get("text", exc)
            raise RuntimeError(f"JS error: {message}")
        return result.get("result", {}).get("value")

    async def screenshot(self) -> bytes:
        """PNG bytes of the current viewport."""
        result = await self.send("Page.captureScreenshot", {"format": "png"})
        return base64.b64decode(result["data"])


class CDPPage:
    """:class:`browser.page.PageHandle` over a bare :class:`CDPSession`."""

    def __init__(self, session: CDPSession):
        self.session = session

    @property
    def debugger(self) -> CDPSession:
        return self.session

    async def navigate(self, url: str) -> None:
        logger.info("[CDP] Navigating to %s", url)
        await self.session.navigate(url)

    async def evaluate(self, script: str) -> Any:
        return await self.session.evaluate(script)

    async def capture_image(self) -> bytes:
        return await self.session.screenshot()
