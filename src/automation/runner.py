"""Sequential execution of parsed commands against the live page."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable

from browser.controller import AutomationController
from config.settings import Settings, get_settings
from src.automation.commands import (
    Click,
    ClickElement,
    Command,
    Fill,
    Find,
    Navigate,
    Press,
    Scroll,
    Type,
    Wait,
)
from src.automation.tracker import ExecutionTracker, RunReport
from src.devlog import DevLog

logger = logging.getLogger(__name__)

# Wheel events from SCROLL(n) land at a fixed point in the viewport.
SCROLL_POINT = (400, 300)


class AutomationBusyError(RuntimeError):
    """Another run is already in progress on this runner."""

    def __init__(self):
        super().__init__("An automation run is already in progress")


class AutomationRunner:
    """Runs commands one at a time, recording each step in the tracker.

    A failing command marks its step ``error`` and the run moves on to the
    next one. A runner drives one run at a time.
    """

    def __init__(
        self,
        controller: AutomationController,
        tracker: ExecutionTracker | None = None,
        settings: Settings | None = None,
        log: DevLog | None = None,
    ):
        settings = settings or get_settings()
        self.controller = controller
        self.tracker = tracker or ExecutionTracker()
        self.log = log or DevLog()
        self.warmup = settings.automation_warmup
        self.settle = settings.automation_settle
        self.linger = settings.automation_linger
        self.command_timeout = settings.automation_command_timeout
        self._running = False

    def is_busy(self) -> bool:
        return self._running

    async def run(self, commands: Iterable[Command]) -> RunReport:
        # One tracker per runner, so overlapping runs are refused even without a page.
        if self._running:
            raise AutomationBusyError()
        self._running = True
        try:
            return await self._run(list(commands))
        finally:
            self._running = False

    async def _run(self, commands: list[Command]) -> RunReport:
        steps = self.tracker.start(commands)
        if not steps:
            return RunReport(steps=[], summary=self.tracker.summary())

        self.log.info("Automation", f"Running {len(steps)} command(s)")
        await self.controller.show_overlay()
        await asyncio.sleep(self.warmup)
        try:
            for index, step in enumerate(steps):
                await self._run_step(index, step.command, step.description)
                if index < len(steps) - 1:
                    await asyncio.sleep(self.settle)
            await asyncio.sleep(self.linger)
        finally:
            await self.controller.hide_overlay()

        summary = self.tracker.summary()
        self.log.info(
            "Automation",
            f"Run finished: {summary.completed} done, {summary.failed} failed",
            {"total_duration_ms": summary.total_duration_ms},
        )
        return RunReport(steps=self.tracker.steps, summary=summary)

    async def _run_step(self, index: int, command: Command, description: str) -> None:
        self.tracker.mark_running(index)
        started = time.monotonic()
        try:
            if self.command_timeout:
                result = await asyncio.wait_for(self.dispatch(command), self.command_timeout)
            else:
                result = await self.dispatch(command)
            error = result.get("error") if isinstance(result, dict) else None
        except asyncio.TimeoutError:
            error = f"Timed out after {self.command_timeout:g}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        elapsed = int((time.monotonic() - started) * 1000)

        if error:
            self.tracker.mark_error(index, elapsed, f"{description}: {error}")
            self.log.warn("Automation", f"Step {index + 1} failed: {description}: {error}")
        else:
            self.tracker.mark_done(index, elapsed)
            logger.debug(f"Step {index + 1} done in {elapsed}ms: {description}")

    async def dispatch(self, command: Command) -> dict:
        """Perform one command through the controller."""
        c = self.controller
        match command:
            case Click(x=x, y=y):
                return await c.click(x, y)
            case ClickElement(selector=selector):
                return await c.click_element(selector)
            case Type(text=text):
                return await c.type(text)
            case Fill(selector=selector, value=value):
                return await c.fill_input(selector, value)
            case Press(key=key, modifiers=modifiers):
                return await c.press_key(key, modifiers)
            case Scroll(delta_y=delta_y):
                return await c.scroll(*SCROLL_POINT, 0, delta_y)
            case Navigate(url=url):
                return await c.navigate(url)
            case Wait(ms=ms):
                return await c.wait(ms)
            case Find(selector=selector):
                return await c.get_elements(selector)
        return {"error": f"Unknown command type: {command.type}"}
