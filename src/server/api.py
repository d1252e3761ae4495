"""FastAPI server for the Wayfarer browser shell."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from browser.browser import BrowserSession
from browser.controller import AutomationController
from config.settings import Settings, get_settings
from src.automation.commands import Command, command_from_dict, parse_commands
from src.automation.copilot import Copilot
from src.automation.runner import AutomationBusyError, AutomationRunner
from src.automation.tracker import ExecutionTracker
from src.llm.errors import (
    BackendError,
    ConfigurationError,
    ProviderConnectionError,
    RequestAborted,
)
from src.llm.service import AIService
from src.llm.streaming import StreamDone, StreamError, TextDelta
from src.server.events import EventManager, sse_format

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the endpoints need, built once per application."""

    service: AIService
    controller: AutomationController
    tracker: ExecutionTracker
    runner: AutomationRunner
    copilot: Copilot
    events: EventManager
    browser: BrowserSession | None = None


# --- Request bodies ---

class MessageBody(BaseModel):
    role: str
    content: str
    image: str | None = None


class ChatRequest(BaseModel):
    messages: list[MessageBody]
    provider: str | None = None


class ProviderRequest(BaseModel):
    provider: str


class TranscribeRequest(BaseModel):
    audio: str  # base64
    mime_type: str = "audio/webm"
    stt: dict[str, Any] | None = None


class SummarizeRequest(BaseModel):
    provider: str | None = None
    text: str | None = None
    title: str | None = None
    url: str | None = None


class TaskRequest(BaseModel):
    task: str
    provider: str | None = None


class PointRequest(BaseModel):
    x: int
    y: int


class TypeRequest(BaseModel):
    text: str
    delay: int = 50


class KeyRequest(BaseModel):
    key: str
    modifiers: list[str] = []


class ScrollRequest(BaseModel):
    x: int = 400
    y: int = 300
    delta_x: int = 0
    delta_y: int = 0


class SelectorRequest(BaseModel):
    selector: str


class FillRequest(BaseModel):
    selector: str
    value: str


class NavigateRequest(BaseModel):
    url: str


class WaitRequest(BaseModel):
    ms: int


class EvaluateRequest(BaseModel):
    script: str


class RunRequest(BaseModel):
    text: str | None = None
    commands: list[dict[str, Any]] | None = None


# --- Error mapping ---

def _error_response(e: Exception) -> JSONResponse:
    if isinstance(e, RequestAborted):
        return JSONResponse({"error": str(e), "aborted": True, "reason": e.reason}, status_code=499)
    if isinstance(e, ConfigurationError):
        status = 400
    elif isinstance(e, AutomationBusyError):
        status = 409
    elif isinstance(e, ProviderConnectionError):
        status = 503
    elif isinstance(e, BackendError):
        status = 502
    else:
        logger.exception(f"Unhandled error: {e}")
        status = 500
    return JSONResponse({"error": str(e)}, status_code=status)


def _commands_from(body: RunRequest) -> list[Command]:
    if body.commands is not None:
        try:
            return [command_from_dict(c) for c in body.commands]
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
    if body.text is not None:
        return parse_commands(body.text)
    raise HTTPException(status_code=400, detail="Provide either 'text' or 'commands'")


def build_state(
    settings: Settings,
    service: AIService | None = None,
    controller: AutomationController | None = None,
    browser: BrowserSession | None = None,
) -> AppState:
    events = EventManager()
    service = service or AIService(settings=settings)
    service.on_log = events.on_log
    if controller is None:
        browser = browser or BrowserSession.from_settings(settings)
        controller = AutomationController(lambda: browser.page, settings=settings)
    tracker = ExecutionTracker()
    tracker.subscribe(events.on_step)
    runner = AutomationRunner(controller, tracker, settings=settings, log=service.log)
    return AppState(
        service=service,
        controller=controller,
        tracker=tracker,
        runner=runner,
        copilot=Copilot(service, controller, runner),
        events=events,
        browser=browser,
    )


def create_app(
    settings: Settings | None = None,
    service: AIService | None = None,
    controller: AutomationController | None = None,
) -> FastAPI:
    """Build the API. Injected service/controller skip browser launch (tests)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        state = build_state(settings, service, controller)
        app.state.wayfarer = state
        if state.browser is not None:
            try:
                await state.browser.launch()
            except Exception as e:
                logger.error(f"Browser launch failed, automation unavailable: {e}")
        yield
        logger.info("Application shutting down...")
        state.service.abort()
        if state.browser is not None:
            await state.browser.close()
        await state.service.close()

    app = FastAPI(title="Wayfarer", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def state(request: Request) -> AppState:
        return request.app.state.wayfarer

    # --- AI ---

    @app.get("/api/health")
    async def health_check(request: Request):
        s = state(request)
        return {
            "status": "ok",
            "provider": s.service.active_provider,
            "in_flight": s.service.in_flight(),
            "tab": s.controller.page is not None,
        }

    @app.post("/api/chat")
    async def chat(body: ChatRequest, request: Request):
        try:
            result = await state(request).service.chat(
                [m.model_dump() for m in body.messages], body.provider
            )
        except Exception as e:
            return _error_response(e)
        return result.to_dict()

    @app.post("/api/chat/stream")
    async def chat_stream(body: ChatRequest, request: Request):
        """Stream a reply as NDJSON lines: chunk*, then one done or error."""
        service = state(request).service
        messages = [m.model_dump() for m in body.messages]

        async def event_generator():
            async for event in service.stream_chat(messages, body.provider):
                if isinstance(event, TextDelta):
                    line = {"type": "chunk", "text": event.text}
                elif isinstance(event, StreamDone):
                    line = {"type": "done", "result": event.result.to_dict() if event.result else None}
                elif isinstance(event, StreamError):
                    line = {"type": "error", "error": str(event.error), "aborted": event.aborted}
                yield json.dumps(line) + "\n"

        return StreamingResponse(event_generator(), media_type="application/x-ndjson")

    @app.post("/api/abort")
    async def abort(request: Request):
        return {"cancelled": state(request).service.abort()}

    @app.get("/api/models")
    async def list_models(request: Request, provider: str | None = None):
        try:
            models = await state(request).service.list_models(provider)
        except Exception as e:
            return _error_response(e)
        return {"models": models}

    @app.post("/api/provider")
    async def switch_provider(body: ProviderRequest, request: Request):
        state(request).service.set_active_provider(body.provider)
        return {"status": "success", "provider": body.provider}

    @app.get("/api/stt/models")
    async def list_stt_models(
        request: Request,
        provider: str,
        api_key: str | None = None,
        base_url: str | None = None,
        key_source: str | None = None,
    ):
        try:
            models = await state(request).service.list_stt_models(provider, api_key, base_url, key_source)
        except Exception as e:
            return _error_response(e)
        return {"models": models}

    @app.post("/api/stt/transcribe")
    async def transcribe(body: TranscribeRequest, request: Request):
        try:
            audio = base64.b64decode(body.audio, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="audio must be base64")
        try:
            text = await state(request).service.transcribe(audio, body.mime_type, body.stt)
        except Exception as e:
            return _error_response(e)
        return {"text": text}

    @app.post("/api/summarize")
    async def summarize(body: SummarizeRequest, request: Request):
        s = state(request)
        page = {"text": body.text, "title": body.title, "url": body.url}
        if body.text is None:
            page = await s.controller.get_page_content()
            if "error" in page:
                return JSONResponse(page, status_code=409)
        try:
            result = await s.service.summarize(
                page.get("text") or "", page.get("title") or "", page.get("url") or "", body.provider
            )
        except Exception as e:
            return _error_response(e)
        return result.to_dict()

    @app.post("/api/task")
    async def execute_task(body: TaskRequest, request: Request):
        try:
            result = await state(request).service.execute_task(body.task, body.provider)
        except Exception as e:
            return _error_response(e)
        return result.to_dict()

    # --- Automation primitives (never raise; errors come back as {"error"}) ---

    @app.get("/api/automation/screenshot")
    async def screenshot(request: Request):
        return await state(request).controller.screenshot()

    @app.get("/api/automation/content")
    async def page_content(request: Request):
        return await state(request).controller.get_page_content()

    @app.get("/api/automation/interactive")
    async def interactive(request: Request):
        return await state(request).controller.find_interactive()

    @app.post("/api/automation/click")
    async def click(body: PointRequest, request: Request):
        return await state(request).controller.click(body.x, body.y)

    @app.post("/api/automation/type")
    async def type_text(body: TypeRequest, request: Request):
        return await state(request).controller.type(body.text, body.delay)

    @app.post("/api/automation/press")
    async def press_key(body: KeyRequest, request: Request):
        return await state(request).controller.press_key(body.key, tuple(body.modifiers))

    @app.post("/api/automation/scroll")
    async def scroll(body: ScrollRequest, request: Request):
        return await state(request).controller.scroll(body.x, body.y, body.delta_x, body.delta_y)

    @app.post("/api/automation/click-element")
    async def click_element(body: SelectorRequest, request: Request):
        return await state(request).controller.click_element(body.selector)

    @app.post("/api/automation/fill")
    async def fill_input(body: FillRequest, request: Request):
        return await state(request).controller.fill_input(body.selector, body.value)

    @app.post("/api/automation/elements")
    async def get_elements(body: SelectorRequest, request: Request):
        return await state(request).controller.get_elements(body.selector)

    @app.post("/api/automation/navigate")
    async def navigate(body: NavigateRequest, request: Request):
        return await state(request).controller.navigate(body.url)

    @app.post("/api/automation/wait")
    async def wait(body: WaitRequest, request: Request):
        return await state(request).controller.wait(body.ms)

    @app.post("/api/automation/evaluate")
    async def evaluate(body: EvaluateRequest, request: Request):
        return await state(request).controller.evaluate(body.script)

    # --- Runs ---

    @app.post("/api/automation/run")
    async def run_commands(body: RunRequest, request: Request):
        commands = _commands_from(body)
        try:
            report = await state(request).runner.run(commands)
        except Exception as e:
            return _error_response(e)
        return report.to_dict()

    @app.post("/api/automation/automate")
    async def automate(body: TaskRequest, request: Request):
        try:
            outcome = await state(request).copilot.automate(body.task, body.provider)
        except Exception as e:
            return _error_response(e)
        return outcome.to_dict()

    @app.get("/api/automation/steps")
    async def steps(request: Request):
        tracker = state(request).tracker
        return {
            "steps": [step.to_dict() for step in tracker.steps],
            "summary": tracker.summary().to_dict(),
        }

    @app.delete("/api/automation/steps")
    async def clear_steps(request: Request):
        s = state(request)
        if s.runner.is_busy():
            return _error_response(AutomationBusyError())
        s.tracker.clear()
        return {"cleared": True}

    @app.get("/api/events")
    async def sse_events(request: Request):
        """Server-Sent Events: step updates and dev-log entries."""
        events = state(request).events

        async def event_stream():
            async with events.subscribe() as queue:
                while True:
                    payload = await queue.get()
                    yield sse_format(payload)

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    return app


app = create_app()
