import asyncio

import pytest

from src.devlog import DevLog
from src.llm.errors import RequestAborted, RequestTimedOut
from src.llm.lifecycle import RequestLifecycleManager


def spy_log():
    events = []
    return DevLog(lambda level, category, message, data=None: events.append((level, message))), events


async def slow_request(manager, timeout=None, started=None):
    async with manager.begin(timeout):
        if started is not None:
            started.set()
        await asyncio.sleep(10)
    return "finished"


@pytest.mark.asyncio
async def test_handle_registers_and_settles():
    manager = RequestLifecycleManager()
    async with manager.begin(5) as handle:
        assert manager.count() == 1
        assert handle.active
    assert manager.count() == 0
    assert not handle.active


@pytest.mark.asyncio
async def test_abort_all_cancels_every_request():
    log, events = spy_log()
    manager = RequestLifecycleManager(log)
    starts = [asyncio.Event() for _ in range(3)]
    tasks = [asyncio.create_task(slow_request(manager, started=s)) for s in starts]
    await asyncio.gather(*(s.wait() for s in starts))

    assert manager.count() == 3
    assert manager.abort_all() == 3
    assert manager.count() == 0

    results = await asyncio.gather(*tasks, return_exceptions=True)
    assert all(isinstance(r, RequestAborted) and not isinstance(r, RequestTimedOut) for r in results)
    assert events == [("warn", "Abort called, cancelled 3 in-flight request(s)")]


@pytest.mark.asyncio
async def test_abort_with_nothing_in_flight():
    log, events = spy_log()
    manager = RequestLifecycleManager(log)
    assert manager.abort_all() == 0
    assert events == []


@pytest.mark.asyncio
async def test_timeout_raises_timed_out_and_logs():
    log, events = spy_log()
    manager = RequestLifecycleManager(log)
    with pytest.raises(RequestTimedOut) as exc_info:
        await slow_request(manager, timeout=0.05)
    assert exc_info.value.reason == "timeout"
    assert str(exc_info.value) == "Request timed out after 0.05s"
    assert ("warn", "Request timed out after 0.05s") in events
    assert manager.count() == 0


@pytest.mark.asyncio
async def test_abort_after_completion_is_a_no_op():
    manager = RequestLifecycleManager()
    async with manager.begin(5) as handle:
        pass
    assert handle.cancel() is False
    assert manager.abort_all() == 0


@pytest.mark.asyncio
async def test_outer_cancellation_is_not_converted():
    manager = RequestLifecycleManager()
    started = asyncio.Event()
    task = asyncio.create_task(slow_request(manager, started=started))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert manager.count() == 0


@pytest.mark.asyncio
async def test_aborted_task_can_keep_running():
    manager = RequestLifecycleManager()
    started = asyncio.Event()

    async def worker():
        try:
            await slow_request(manager, started=started)
        except RequestAborted:
            await asyncio.sleep(0)
            return "recovered"

    task = asyncio.create_task(worker())
    await started.wait()
    manager.abort_all()
    assert await task == "recovered"
