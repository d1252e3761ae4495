import json

import pytest

from src.automation.commands import Wait
from src.automation.tracker import ExecutionTracker
from src.server.events import EventManager, sse_format


@pytest.mark.asyncio
async def test_broadcast_reaches_every_subscriber():
    events = EventManager()
    async with events.subscribe() as first, events.subscribe() as second:
        assert events.subscriber_count == 2
        events.on_log("info", "AI", "hello", None)
        for queue in (first, second):
            payload = json.loads(await queue.get())
            assert payload == {
                "type": "log",
                "content": {"level": "info", "category": "AI", "message": "hello", "data": None},
            }
    assert events.subscriber_count == 0


@pytest.mark.asyncio
async def test_step_updates_are_broadcast():
    events = EventManager()
    tracker = ExecutionTracker()
    tracker.subscribe(events.on_step)
    async with events.subscribe() as queue:
        tracker.start([Wait(5)])
        payload = json.loads(await queue.get())
    assert payload["type"] == "step"
    assert payload["content"]["index"] == 0
    assert payload["content"]["status"] == "pending"


@pytest.mark.asyncio
async def test_full_queue_drops_events():
    events = EventManager(max_queue=1)
    async with events.subscribe() as queue:
        events.broadcast("log", "one")
        events.broadcast("log", "two")
        assert queue.qsize() == 1
        assert json.loads(queue.get_nowait())["content"] == "one"


def test_sse_format():
    assert sse_format('{"a": 1}') == 'data: {"a": 1}\n\n'
