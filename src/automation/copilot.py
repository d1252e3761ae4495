"""Plan, parse, execute: turn a task or a chat reply into browser actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from browser.controller import AutomationController
from src.automation import prompts
from src.automation.commands import clean_message_text, parse_commands
from src.automation.runner import AutomationRunner
from src.automation.tracker import RunReport
from src.llm.base import ChatMessage, ChatResult
from src.llm.service import AIService

logger = logging.getLogger(__name__)

MAX_ELEMENTS = 40


def describe_element(element: dict[str, Any]) -> str:
    """One prompt line for an interactive element."""
    parts = [f"[{element.get('index', '?')}] <{element.get('tag', '?')}>"]
    if element.get("id"):
        parts.append(f"#{element['id']}")
    if element.get("type"):
        parts.append(f"type={element['type']}")
    text = (element.get("text") or "").strip().replace("\n", " ")
    if text:
        parts.append(f'"{text[:60]}"')
    if element.get("href"):
        parts.append(f"href={element['href'][:80]}")
    parts.append(f"at ({element.get('x')}, {element.get('y')})")
    return " ".join(parts)


@dataclass
class CopilotOutcome:
    """What the model said and what running its commands did."""

    reply: ChatResult | None
    message: str
    report: RunReport | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reply": self.reply.to_dict() if self.reply else None,
            "message": self.message,
            "report": self.report.to_dict() if self.report else None,
        }


class Copilot:
    def __init__(
        self,
        service: AIService,
        controller: AutomationController,
        runner: AutomationRunner,
    ):
        self.service = service
        self.controller = controller
        self.runner = runner

    async def _page_context(self) -> tuple[dict, str, str | None]:
        content = await self.controller.get_page_content()
        if "error" in content:
            content = {"title": "", "url": ""}

        found = await self.controller.find_interactive()
        elements = found.get("elements") or []
        lines = [describe_element(el) for el in elements[:MAX_ELEMENTS]]

        shot = await self.controller.screenshot()
        image = shot.get("image")
        if image is None:
            logger.info(f"Screenshot unavailable, sending text only: {shot.get('error')}")
        return content, "\n".join(lines) or "(none found)", image

    async def automate(self, task: str, provider: str | None = None) -> CopilotOutcome:
        """Ask the model for commands that accomplish ``task`` and run them."""
        content, elements, image = await self._page_context()
        user = prompts.AUTOMATION_TEMPLATE.format(
            task=task,
            title=content.get("title") or "",
            url=content.get("url") or "",
            elements=elements,
        )
        messages = [
            ChatMessage("system", prompts.AUTOMATION_PROMPT),
            ChatMessage("user", user, image=image),
        ]
        reply = await self.service.chat(messages, provider)
        outcome = await self.handle_response(reply.content)
        outcome.reply = reply
        return outcome

    async def handle_response(self, text: str) -> CopilotOutcome:
        """Run the commands found in a finished reply; return its prose and the report."""
        commands = parse_commands(text)
        message = clean_message_text(text)
        if not commands:
            return CopilotOutcome(reply=None, message=message, report=None)
        logger.info(f"Executing {len(commands)} command(s) from model reply")
        report = await self.runner.run(commands)
        return CopilotOutcome(reply=None, message=message, report=report)
