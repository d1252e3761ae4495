import asyncio
import base64
import json
from unittest.mock import AsyncMock, patch

import pytest

from browser.browser import BrowserSession
from browser.cdp import CDPError, CDPPage, CDPSession


class FakeSocket:
    """Websocket stand-in; ``respond(msg)`` returns the frames to send back."""

    def __init__(self, respond):
        self.respond = respond
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, raw: str) -> None:
        msg = json.loads(raw)
        self.sent.append(msg)
        for frame in self.respond(msg):
            self.inbox.put_nowait(json.dumps(frame))

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self.inbox.get()

    async def close(self) -> None:
        self.closed = True


def reply_with(results: dict):
    def respond(msg):
        value = results.get(msg["method"], {})
        if callable(value):
            return value(msg)
        return [{"id": msg["id"], "result": value}]

    return respond


async def attached(respond) -> tuple[CDPSession, FakeSocket]:
    sock = FakeSocket(respond)
    session = CDPSession(port=9333)
    with patch.object(CDPSession, "_discover", AsyncMock(return_value="ws://x/devtools/page/1")), \
         patch("browser.cdp.websockets.connect", AsyncMock(return_value=sock)) as connect:
        await session.attach()
    connect.assert_awaited_once_with("ws://x/devtools/page/1", max_size=None)
    return session, sock


@pytest.mark.asyncio
async def test_send_matches_replies_by_id():
    session, sock = await attached(reply_with({"Browser.getVersion": {"product": "Chrome/126"}}))
    assert await session.send("Browser.getVersion") == {"product": "Chrome/126"}
    assert await session.send("Browser.getVersion") == {"product": "Chrome/126"}
    assert [m["id"] for m in sock.sent] == [1, 2]
    await session.close()
    assert sock.closed and not session.attached


@pytest.mark.asyncio
async def test_error_reply_raises():
    def respond(msg):
        return [{"id": msg["id"], "error": {"code": -32000, "message": "Cannot find context"}}]

    session, _ = await attached(respond)
    with pytest.raises(CDPError, match=r"CDP error \(Runtime.evaluate\): Cannot find context"):
        await session.send("Runtime.evaluate", {"expression": "1"})
    await session.close()


@pytest.mark.asyncio
async def test_second_attach_reports_already_attached():
    session, _ = await attached(reply_with({}))
    with pytest.raises(RuntimeError, match="Already attached"):
        await session.attach()
    await session.close()


@pytest.mark.asyncio
async def test_send_without_attach():
    with pytest.raises(RuntimeError, match="not attached"):
        await CDPSession().send("Page.enable")


@pytest.mark.asyncio
async def test_navigate_waits_for_load_event():
    def navigated(msg):
        return [
            {"id": msg["id"], "result": {"frameId": "F"}},
            {"method": "Page.loadEventFired", "params": {"timestamp": 1.0}},
        ]

    session, sock = await attached(reply_with({"Page.navigate": navigated}))
    await session.navigate("https://example.com")
    assert [m["method"] for m in sock.sent] == ["Page.enable", "Page.navigate"]
    assert sock.sent[1]["params"] == {"url": "https://example.com"}
    assert session._listeners["Page.loadEventFired"] == []
    await session.close()


@pytest.mark.asyncio
async def test_navigate_error_text():
    session, _ = await attached(reply_with({"Page.navigate": {"errorText": "net::ERR_NAME_NOT_RESOLVED"}}))
    with pytest.raises(CDPError, match="ERR_NAME_NOT_RESOLVED"):
        await session.navigate("https://nowhere.invalid")
    await session.close()


@pytest.mark.asyncio
async def test_evaluate_value_and_exception():
    def evaluated(msg):
        if msg["params"]["expression"] == "boom()":
            details = {"text": "Uncaught", "exception": {"description": "ReferenceError: boom is not defined"}}
            return [{"id": msg["id"], "result": {"exceptionDetails": details}}]
        return [{"id": msg["id"], "result": {"result": {"type": "number", "value": 42}}}]

    session, sock = await attached(reply_with({"Runtime.evaluate": evaluated}))
    assert await session.evaluate("6 * 7") == 42
    assert sock.sent[0]["params"]["returnByValue"] is True
    with pytest.raises(RuntimeError, match="JS error: ReferenceError: boom is not defined"):
        await session.evaluate("boom()")
    await session.close()


@pytest.mark.asyncio
async def test_event_handler_failure_is_contained():
    session, _ = await attached(reply_with({}))
    seen = []

    async def broken(params):
        raise ValueError("handler bug")

    async def good(params):
        seen.append(params)

    session.on_event("Network.requestWillBeSent", broken)
    session.on_event("Network.requestWillBeSent", good)
    await session._dispatch_event("Network.requestWillBeSent", {"requestId": "1"})
    assert seen == [{"requestId": "1"}]
    await session.close()


@pytest.mark.asyncio
async def test_close_fails_pending_requests():
    session, _ = await attached(lambda msg: [])
    pending = asyncio.create_task(session.send("Page.reload"))
    await asyncio.sleep(0)
    await session.close()
    with pytest.raises(CDPError, match="session closed"):
        await pending


@pytest.mark.asyncio
async def test_cdp_page_delegates_to_session():
    session = AsyncMock(spec=CDPSession)
    session.screenshot.return_value = b"png"
    page = CDPPage(session)

    await page.navigate("https://a.test")
    assert await page.capture_image() == b"png"
    assert page.debugger is session
    session.navigate.assert_awaited_once_with("https://a.test")


@pytest.mark.asyncio
async def test_screenshot_decodes_base64():
    data = base64.b64encode(b"\x89PNG...").decode()
    session, _ = await attached(reply_with({"Page.captureScreenshot": {"data": data}}))
    assert await session.screenshot() == b"\x89PNG..."
    await session.close()


@pytest.mark.asyncio
async def test_browser_session_direct_backend():
    with patch("browser.browser.ChromeProcess") as chrome_cls, patch("browser.browser.CDPSession") as session_cls:
        chrome = chrome_cls.return_value
        chrome.wait_ready = AsyncMock()
        session = session_cls.return_value
        session.attach = AsyncMock()
        session.close = AsyncMock()

        browser = BrowserSession(use_playwright=False, port=9444, headless=True)
        assert browser.backend == "cdp"
        async with browser:
            assert isinstance(browser.page, CDPPage)
            assert browser.page.debugger is session
            chrome.launch.assert_called_once()
            session_cls.assert_called_once_with(port=9444)

    assert browser.page is None
    session.close.assert_awaited_once()
    chrome.terminate.assert_called_once()
