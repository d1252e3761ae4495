"""Step-by-step progress of an automation run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable

from src.automation.commands import Command, describe_command

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class InvalidTransition(RuntimeError):
    """A step was moved out of order (e.g. finished before it started)."""


@dataclass(frozen=True)
class Step:
    """One command's entry in the step log."""

    command: Command
    description: str
    status: StepStatus = StepStatus.PENDING
    duration_ms: int | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "description": self.description,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "detail": self.detail,
        }


@dataclass
class RunSummary:
    """Counts and timing for a step list."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    running: int = 0
    pending: int = 0
    total_duration_ms: int = 0

    @property
    def finished(self) -> int:
        return self.completed + self.failed

    @property
    def progress(self) -> int:
        """Percentage of steps that have finished, rounded down."""
        if not self.total:
            return 0
        return self.finished * 100 // self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "running": self.running,
            "pending": self.pending,
            "progress": self.progress,
            "total_duration_ms": self.total_duration_ms,
            "total_duration": format_duration(self.total_duration_ms),
        }


StepListener = Callable[[int, Step], None]


def format_duration(ms: int | None) -> str:
    if ms is None:
        return ""
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


class ExecutionTracker:
    """Holds the ordered step list and enforces its state machine.

    Steps move ``pending -> running -> done | error`` and never back. At most
    one step runs at a time. Listeners are told about every change; a failing
    listener is logged and skipped.
    """

    def __init__(self):
        self._steps: list[Step] = []
        self._listeners: list[StepListener] = []

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def running_index(self) -> int | None:
        for i, step in enumerate(self._steps):
            if step.status is StepStatus.RUNNING:
                return i
        return None

    def subscribe(self, listener: StepListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def start(self, commands: list[Command]) -> list[Step]:
        """Reset the log to one pending step per command."""
        self._steps = [Step(command=c, description=describe_command(c)) for c in commands]
        for i, step in enumerate(self._steps):
            self._notify(i, step)
        return self.steps

    def clear(self) -> None:
        self._steps = []

    def mark_running(self, index: int) -> Step:
        running = self.running_index
        if running is not None:
            raise InvalidTransition(f"Step {running} is still running")
        return self._move(index, StepStatus.PENDING, status=StepStatus.RUNNING)

    def mark_done(self, index: int, duration_ms: int) -> Step:
        return self._move(
            index, StepStatus.RUNNING, status=StepStatus.DONE, duration_ms=duration_ms
        )

    def mark_error(self, index: int, duration_ms: int, detail: str) -> Step:
        return self._move(
            index,
            StepStatus.RUNNING,
            status=StepStatus.ERROR,
            duration_ms=duration_ms,
            detail=detail,
        )

    def summary(self) -> RunSummary:
        summary = RunSummary(total=len(self._steps))
        for step in self._steps:
            if step.status is StepStatus.DONE:
                summary.completed += 1
            elif step.status is StepStatus.ERROR:
                summary.failed += 1
            elif step.status is StepStatus.RUNNING:
                summary.running += 1
            else:
                summary.pending += 1
            summary.total_duration_ms += step.duration_ms or 0
        return summary

    def _move(self, index: int, expected: StepStatus, **changes: Any) -> Step:
        if not 0 <= index < len(self._steps):
            raise IndexError(f"No step {index} (have {len(self._steps)})")
        step = self._steps[index]
        if step.status is not expected:
            raise InvalidTransition(
                f"Step {index} is {step.status.value}, expected {expected.value}"
            )
        step = replace(step, **changes)
        self._steps[index] = step
        self._notify(index, step)
        return step

    def _notify(self, index: int, step: Step) -> None:
        for listener in list(self._listeners):
            try:
                listener(index, step)
            except Exception as e:
                logger.warning(f"Step listener failed: {e}")


@dataclass
class RunReport:
    """Outcome of one automation run."""

    steps: list[Step] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)

    @property
    def ok(self) -> bool:
        return self.summary.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "steps": [step.to_dict() for step in self.steps],
            "summary": self.summary.to_dict(),
        }
