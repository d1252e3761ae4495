"""
browser/__init__.py
-------------------
Wayfarer – Browser layer

Launches Chromium (Playwright preferred, raw CDP otherwise) and drives its
active tab with protocol-level input, falling back to injected DOM scripts.

Public API
----------
    from browser import BrowserSession, BrowserAutomation, AutomationController

Quick-start
-----------
    from browser import AutomationController, BrowserSession

    async with BrowserSession(headless=True) as session:
        controller = AutomationController(lambda: session.page)
        await controller.navigate("https://example.com")
        print(await controller.click_element("a"))
"""

from .automation import BrowserAutomation, ElementError, ElementNotFound, ElementNotVisible
from .browser    import BrowserSession
from .cdp        import CDPError, CDPPage, CDPSession, ChromeProcess
from .controller import AutomationController
from .page       import PageHandle, PlaywrightPage

__all__ = [
    "AutomationController",
    "BrowserAutomation",
    "BrowserSession",
    "CDPError",
    "CDPPage",
    "CDPSession",
    "ChromeProcess",
    "ElementError",
    "ElementNotFound",
    "ElementNotVisible",
    "PageHandle",
    "PlaywrightPage",
]
