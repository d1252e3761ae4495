"""Command-Line Interface for Wayfarer."""

from typing import NoReturn

from rich.console import Console
from rich.markdown import Markdown
from rich.prompt import Prompt
from rich.table import Table

from browser.browser import BrowserSession
from browser.controller import AutomationController
from config.settings import get_settings
from src.automation.commands import parse_commands
from src.automation.copilot import Copilot
from src.automation.prompts import ASSISTANT_PROMPT
from src.automation.runner import AutomationRunner
from src.automation.tracker import ExecutionTracker, RunReport, Step, StepStatus, format_duration
from src.llm.factory import ProviderFactory
from src.llm.service import AIService
from src.llm.streaming import StreamDone, StreamError, TextDelta

STATUS_STYLE = {
    StepStatus.PENDING: "[dim]○ pending[/]",
    StepStatus.RUNNING: "[yellow]◐ running[/]",
    StepStatus.DONE: "[green]● done[/]",
    StepStatus.ERROR: "[red]✖ error[/]",
}


class CLI:
    """Terminal front end: chat with streaming, and drive the browser."""

    def __init__(self, launch_browser: bool = True):
        self.console = Console()
        self.settings = get_settings()
        self.launch_browser = launch_browser
        self.service: AIService | None = None
        self.browser: BrowserSession | None = None
        self.tracker = ExecutionTracker()
        self.history: list[dict] = []

    async def start(self) -> NoReturn:
        """Start the CLI loop."""
        self.console.print("[bold green]Initializing Wayfarer...[/]")

        self.service = AIService(settings=self.settings)
        self.browser = BrowserSession.from_settings(self.settings)
        if self.launch_browser:
            try:
                await self.browser.launch()
            except Exception as e:
                self.console.print(f"[yellow]Browser unavailable, automation disabled:[/] {e}")

        controller = AutomationController(lambda: self.browser.page, settings=self.settings)
        self.tracker.subscribe(self._print_step)
        self.runner = AutomationRunner(controller, self.tracker, settings=self.settings, log=self.service.log)
        self.copilot = Copilot(self.service, controller, self.runner)

        self.console.print(f"\n[bold blue]Provider:[/] {self.service.active_provider}")
        self.console.print("[dim]Type 'quit' to exit, 'help' for commands[/]\n")

        try:
            while True:
                try:
                    user_input = Prompt.ask("[bold green]You[/]").strip()

                    if not user_input:
                        continue

                    if user_input.lower() in ("quit", "exit"):
                        self.console.print("[yellow]Goodbye![/]")
                        break

                    if await self._handle_command(user_input):
                        continue

                    await self._chat(user_input)

                except KeyboardInterrupt:
                    cancelled = self.service.abort()
                    if cancelled:
                        self.console.print(f"\n[yellow]Stopped {cancelled} request(s).[/]")
                        continue
                    self.console.print("\n[yellow]Goodbye![/]")
                    break
                except Exception as e:
                    self.console.print(f"[bold red]Error:[/] {e}")
        finally:
            await self.browser.close()
            await self.service.close()

    async def _handle_command(self, user_input: str) -> bool:
        """Handle internal CLI commands. Returns True if command was handled."""
        cmd, _, rest = user_input.partition(" ")
        cmd = cmd.lower()
        rest = rest.strip()

        if cmd == "help":
            self.console.print("\n[bold]Commands:[/]")
            self.console.print("  [cyan]<message>[/]           Chat with the active provider (streamed)")
            self.console.print("  [cyan]automate <task>[/]     Let the model drive the browser")
            self.console.print("  [cyan]run <commands>[/]      Execute commands, e.g. run NAVIGATE(\"https://example.com\")")
            self.console.print("  [cyan]go <url>[/]            Navigate the tab")
            self.console.print("  [cyan]summarize[/]           Summarize the current page")
            self.console.print("  [cyan]models[/]              List models of the active provider")
            self.console.print(f"  [cyan]switch <provider>[/]   One of: {', '.join(ProviderFactory.get_available_providers())}")
            self.console.print("  [cyan]steps[/]               Show the last run's step log")
            self.console.print("  [cyan]abort[/]               Cancel in-flight requests")
            self.console.print("  [cyan]clear[/]               Clear conversation history and step log")
            self.console.print("  [cyan]quit/exit[/]           Exit application\n")
            return True

        if cmd == "switch":
            if not rest:
                self.console.print("[red]Usage: switch <provider>[/]")
                return True
            self.service.set_active_provider(rest)
            self.console.print(f"[green]Switched to {rest}[/]")
            return True

        if cmd == "models":
            with self.console.status("[bold green]Fetching models...[/]", spinner="dots"):
                models = await self.service.list_models(rest or None)
            for name in models:
                self.console.print(f"  {name}")
            if not models:
                self.console.print("[dim]No models found.[/]")
            return True

        if cmd == "abort":
            self.console.print(f"[yellow]Cancelled {self.service.abort()} request(s).[/]")
            return True

        if cmd == "clear":
            self.history.clear()
            self.tracker.clear()
            self.console.print("[green]History and step log cleared.[/]")
            return True

        if cmd == "steps":
            self._print_report(RunReport(steps=self.tracker.steps, summary=self.tracker.summary()))
            return True

        if cmd == "go" and rest:
            result = await self.runner.controller.navigate(rest)
            self.console.print(f"[red]{result['error']}[/]" if "error" in result else f"[green]Loaded {rest}[/]")
            return True

        if cmd == "summarize":
            page = await self.runner.controller.get_page_content()
            if "error" in page:
                self.console.print(f"[red]{page['error']}[/]")
                return True
            with self.console.status("[bold green]Summarizing...[/]", spinner="dots"):
                result = await self.service.summarize(page["text"], page["title"], page["url"])
            self.console.print(Markdown(result.content))
            return True

        if cmd == "run" and rest:
            commands = parse_commands(rest.replace("; ", "\n"))
            if not commands:
                self.console.print("[red]No commands found.[/]")
                return True
            self._print_report(await self.runner.run(commands))
            return True

        if cmd == "automate" and rest:
            with self.console.status("[bold green]Planning...[/]", spinner="dots"):
                outcome = await self.copilot.automate(rest)
            if outcome.message:
                self.console.print(Markdown(outcome.message))
            if outcome.report:
                self._print_report(outcome.report)
            else:
                self.console.print("[yellow]The model returned no commands.[/]")
            return True

        return False

    async def _chat(self, user_input: str) -> None:
        """Run a chat turn, streaming the reply, then execute any commands in it."""
        self.history.append({"role": "user", "content": user_input})
        self.console.print("[bold blue]Wayfarer[/]: ", end="")

        reply = ""
        async for event in self.service.stream_chat(self._messages()):
            if isinstance(event, TextDelta):
                reply += event.text
                self.console.print(event.text, end="", markup=False, highlight=False)
            elif isinstance(event, StreamDone):
                self.console.print()
            elif isinstance(event, StreamError):
                label = "Stopped" if event.aborted else "Error"
                self.console.print(f"\n[bold red]{label}:[/] {event.error}")
                return

        self.history.append({"role": "assistant", "content": reply})
        if parse_commands(reply):
            outcome = await self.copilot.handle_response(reply)
            self._print_report(outcome.report)
        self.console.print()  # Spacing

    def _messages(self) -> list[dict]:
        return [{"role": "system", "content": ASSISTANT_PROMPT}, *self.history]

    def _print_step(self, index: int, step: Step) -> None:
        if step.status is StepStatus.RUNNING:
            self.console.print(f"  [yellow]▶[/] {index + 1}. {step.description}")
        elif step.status is StepStatus.ERROR:
            self.console.print(f"  [red]✖[/] {index + 1}. {step.detail}")

    def _print_report(self, report: RunReport | None) -> None:
        if report is None or not report.steps:
            self.console.print("[dim]No steps recorded.[/]")
            return
        table = Table(title="Automation", show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Time", justify="right")
        for i, step in enumerate(report.steps, 1):
            table.add_row(
                str(i),
                step.detail or step.description,
                STATUS_STYLE[step.status],
                format_duration(step.duration_ms),
            )
        self.console.print(table)
        summary = report.summary
        self.console.print(
            f"[bold]{summary.completed}/{summary.total}[/] done, "
            f"{summary.failed} failed, {format_duration(summary.total_duration_ms)}"
        )
