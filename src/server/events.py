import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)


class EventManager:
    """Fans step updates and dev-log events out to Server-Sent Events clients."""

    def __init__(self, max_queue: int = 1000):
        self._queues: set[asyncio.Queue] = set()
        self._max_queue = max_queue

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    @asynccontextmanager
    async def subscribe(self) -> AsyncGenerator[asyncio.Queue, None]:
        """Subscribe to events."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._queues.add(queue)
        logger.debug(f"Client subscribed. Total subscribers: {len(self._queues)}")
        try:
            yield queue
        finally:
            self._queues.discard(queue)
            logger.debug(f"Client unsubscribed. Total subscribers: {len(self._queues)}")

    def broadcast(self, event_type: str, data: Any) -> None:
        """Queue an event for every subscriber; slow clients drop events."""
        if not self._queues:
            return

        payload = json.dumps({"type": event_type, "content": data}, default=str)
        for queue in self._queues:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping event for one subscriber")

    # Hooks for ExecutionTracker.subscribe and DevLog(sink=...)

    def on_step(self, index: int, step) -> None:
        self.broadcast("step", {"index": index, **step.to_dict()})

    def on_log(self, level: str, category: str, message: str, data: dict | None = None) -> None:
        self.broadcast("log", {"level": level, "category": category, "message": message, "data": data})


def sse_format(payload: str) -> str:
    return f"data: {payload}\n\n"
