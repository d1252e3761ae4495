import logging

from src.devlog import DevLog


def test_events_reach_logging_and_sink(caplog):
    events = []
    log = DevLog(lambda *args: events.append(args))
    with caplog.at_level(logging.INFO, logger="wayfarer"):
        log.warn("AI", "slow reply")
    assert events == [("warn", "AI", "slow reply", None)]
    assert [(r.name, r.levelno, r.getMessage()) for r in caplog.records] == [
        ("wayfarer.ai", logging.WARNING, "slow reply")
    ]


def test_failing_sink_is_ignored(caplog):
    def broken(*args):
        raise RuntimeError("panel closed")

    with caplog.at_level(logging.INFO, logger="wayfarer"):
        DevLog(broken).info("Automation", "step done")
    assert caplog.records[0].getMessage() == "step done"
