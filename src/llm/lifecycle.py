"""Registry of cancellable in-flight network requests.

Each backend call runs under a :class:`RequestHandle` obtained from
:meth:`RequestLifecycleManager.begin`. The handle is bound to the task that
created it; cancelling the handle cancels that task, and leaving the handle's
``async with`` block turns the resulting ``CancelledError`` into
:class:`RequestAborted` (or :class:`RequestTimedOut` when the deadline fired).

    async with manager.begin(timeout=120) as handle:
        response = await client.post(...)
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from src.devlog import DevLog
from src.llm.errors import RequestAborted, RequestTimedOut

logger = logging.getLogger(__name__)


class RequestHandle:
    """A single cancellable request registered with a manager."""

    def __init__(self, manager: "RequestLifecycleManager", timeout: float | None):
        self._manager = manager
        self.timeout = timeout
        self._task = asyncio.current_task()
        self._timer: asyncio.TimerHandle | None = None
        self._settled = False
        self.cancelled = False
        self.reason: str | None = None

        if timeout is not None and timeout > 0:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout, self._expire)

    @property
    def active(self) -> bool:
        return not self._settled

    def cancel(self, reason: str = "aborted") -> bool:
        """Cancel the request. Returns False if it already settled or was cancelled."""
        if self._settled:
            return False
        self.cancelled = True
        self.reason = reason
        self._settle()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def _expire(self) -> None:
        self._timer = None
        if self._settled:
            return
        self._manager.log.warn("AI", f"Request timed out after {self.timeout:g}s")
        self.cancel("timeout")

    def _settle(self) -> None:
        if self._settled:
            return
        self._settled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._manager._discard(self)

    async def __aenter__(self) -> "RequestHandle":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        self._settle()
        if self.cancelled and exc_type is asyncio.CancelledError:
            if self._task is not None:
                self._task.uncancel()
            if self.reason == "timeout":
                raise RequestTimedOut(self.timeout or 0) from exc
            raise RequestAborted() from exc
        return False


class RequestLifecycleManager:
    """Tracks in-flight requests and cancels them individually or all at once."""

    def __init__(self, log: DevLog | None = None):
        self.log = log or DevLog()
        self._active: set[RequestHandle] = set()

    def begin(self, timeout: float | None = 120.0) -> RequestHandle:
        """Register a new request bound to the current task.

        Args:
            timeout: Seconds before the request is cancelled automatically;
                ``None`` disables the deadline

        Returns:
            The registered handle, to be used as an async context manager
        """
        handle = RequestHandle(self, timeout)
        self._active.add(handle)
        return handle

    def count(self) -> int:
        return len(self._active)

    def abort_all(self) -> int:
        """Cancel every registered request. Returns how many were cancelled."""
        handles = list(self._active)
        self._active.clear()
        cancelled = sum(1 for handle in handles if handle.cancel("aborted"))
        if cancelled:
            self.log.warn("AI", f"Abort called, cancelled {cancelled} in-flight request(s)")
        return cancelled

    def _discard(self, handle: RequestHandle) -> None:
        self._active.discard(handle)
