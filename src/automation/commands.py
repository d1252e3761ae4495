"""Automation command grammar.

Models answer in prose with commands on their own lines, e.g.::

    I'll search for that.
    FILL("textarea[name='q']", "rust async runtimes")
    PRESS("Enter")
    WAIT(1000)

:func:`parse_commands` extracts those commands in order, ignoring everything
else; code fences are unwrapped first so fenced commands count too.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar


@dataclass(frozen=True)
class Command:
    """Base class for parsed commands; ``type`` is the wire tag."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if "modifiers" in data:
            data["modifiers"] = list(data["modifiers"])
        return {"type": self.type, **data}


@dataclass(frozen=True)
class Click(Command):
    type: ClassVar[str] = "click"
    x: int
    y: int


@dataclass(frozen=True)
class ClickElement(Command):
    type: ClassVar[str] = "click_element"
    selector: str


@dataclass(frozen=True)
class Type(Command):
    type: ClassVar[str] = "type"
    text: str


@dataclass(frozen=True)
class Fill(Command):
    type: ClassVar[str] = "fill"
    selector: str
    value: str


@dataclass(frozen=True)
class Press(Command):
    type: ClassVar[str] = "press"
    key: str
    modifiers: tuple[str, ...] = field(default=())


@dataclass(frozen=True)
class Scroll(Command):
    type: ClassVar[str] = "scroll"
    delta_y: int


@dataclass(frozen=True)
class Navigate(Command):
    type: ClassVar[str] = "navigate"
    url: str


@dataclass(frozen=True)
class Wait(Command):
    type: ClassVar[str] = "wait"
    ms: int


@dataclass(frozen=True)
class Find(Command):
    type: ClassVar[str] = "find"
    selector: str


COMMAND_TYPES: dict[str, type[Command]] = {
    cls.type: cls
    for cls in (Click, ClickElement, Type, Fill, Press, Scroll, Navigate, Wait, Find)
}


def command_from_dict(data: dict[str, Any]) -> Command:
    """Rebuild a command saved with :meth:`Command.to_dict`."""
    fields = dict(data)
    kind = fields.pop("type", None)
    cls = COMMAND_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown command type: {kind!r}")
    if "modifiers" in fields:
        fields["modifiers"] = tuple(fields["modifiers"])
    return cls(**fields)


# ---------------------------------------------------------------------------
# Grammar
# ---------------------------------------------------------------------------

_STR = r'"([^"]*)"'

_PATTERNS: list[tuple[re.Pattern[str], Callable[[re.Match[str]], Command]]] = [
    (re.compile(r"CLICK\s*\(\s*(\d+)\s*,\s*(\d+)\s*\)"),
     lambda m: Click(int(m[1]), int(m[2]))),
    (re.compile(rf"CLICK_ELEMENT\s*\(\s*{_STR}\s*\)"),
     lambda m: ClickElement(m[1])),
    (re.compile(rf"TYPE\s*\(\s*{_STR}\s*\)"),
     lambda m: Type(m[1])),
    (re.compile(r'FILL\s*\(\s*"([^"]*?)"\s*,\s*' + _STR + r"\s*\)"),
     lambda m: Fill(m[1], m[2])),
    (re.compile(rf'PRESS\s*\(\s*{_STR}((?:\s*,\s*"[^"]*")*)\s*\)'),
     lambda m: Press(m[1], tuple(re.findall(r'"([^"]*)"', m[2])))),
    (re.compile(r"SCROLL\s*\(\s*(-?\d+)\s*\)"),
     lambda m: Scroll(int(m[1]))),
    (re.compile(rf"NAVIGATE\s*\(\s*{_STR}\s*\)"),
     lambda m: Navigate(m[1])),
    (re.compile(r"WAIT\s*\(\s*(\d+)\s*\)"),
     lambda m: Wait(int(m[1]))),
    (re.compile(rf"FIND\s*\(\s*{_STR}\s*\)"),
     lambda m: Find(m[1])),
]

_FENCE = re.compile(r"```[\s\S]*?```")
_FENCE_OPEN = re.compile(r"```\w*\n?")


def _unfence(block: re.Match[str]) -> str:
    inner = _FENCE_OPEN.sub("", block.group(0), count=1)
    return inner.replace("```", "", 1)


def parse_line(line: str) -> Command | None:
    """Parse one trimmed line holding exactly one call, or return ``None``."""
    for pattern, build in _PATTERNS:
        match = pattern.fullmatch(line)
        if match:
            return build(match)
    return None


def parse_commands(text: str) -> list[Command]:
    """Extract commands from free-form model output, in order.

    At most one command per line. Lines without a recognised signature are
    ignored, so prose never causes an error.
    """
    text = _FENCE.sub(_unfence, text)
    commands = []
    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue
        command = parse_line(line)
        if command is not None:
            commands.append(command)
    return commands


def _is_command_line(line: str) -> bool:
    # A fence marker glued to a call is dropped by parse_commands when unfencing.
    return parse_line(line.strip().strip("`").strip()) is not None


def clean_message_text(text: str) -> str:
    """Drop command lines from a reply, leaving the prose for display."""
    lines = [line for line in text.split("\n") if not _is_command_line(line)]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def format_command(command: Command) -> str:
    """Render a command back into its textual signature."""
    match command:
        case Click(x=x, y=y):
            return f"CLICK({x}, {y})"
        case ClickElement(selector=selector):
            return f'CLICK_ELEMENT("{selector}")'
        case Type(text=text):
            return f'TYPE("{text}")'
        case Fill(selector=selector, value=value):
            return f'FILL("{selector}", "{value}")'
        case Press(key=key, modifiers=modifiers):
            return "PRESS(" + ", ".join(f'"{part}"' for part in (key, *modifiers)) + ")"
        case Scroll(delta_y=delta_y):
            return f"SCROLL({delta_y})"
        case Navigate(url=url):
            return f'NAVIGATE("{url}")'
        case Wait(ms=ms):
            return f"WAIT({ms})"
        case Find(selector=selector):
            return f'FIND("{selector}")'
    raise ValueError(f"Cannot format command: {command!r}")


def _truncate(value: str, limit: int) -> str:
    return value[:limit] + "…" if len(value) > limit else value


def describe_command(command: Command) -> str:
    """Human-readable one-liner for the step log."""
    match command:
        case Click(x=x, y=y):
            return f"Click at ({x}, {y})"
        case ClickElement(selector=selector):
            return f'Click "{selector}"'
        case Type(text=text):
            return f'Type "{_truncate(text, 30)}"'
        case Fill(selector=selector, value=value):
            return f'Fill "{selector}" with "{_truncate(value, 20)}"'
        case Press(key=key, modifiers=modifiers) if modifiers:
            return f"Press {'+'.join((*modifiers, key))}"
        case Press(key=key):
            return f"Press {key}"
        case Scroll(delta_y=delta_y):
            return f"Scroll {'down' if delta_y > 0 else 'up'} {abs(delta_y)}px"
        case Navigate(url=url):
            return f"Navigate to {_truncate(url, 40)}"
        case Wait(ms=ms):
            return f"Wait {ms}ms"
        case Find(selector=selector):
            return f'Find "{selector}"'
    return command.type
