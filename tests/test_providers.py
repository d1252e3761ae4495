import json

import httpx
import pytest

from src.llm.base import ChatMessage, ProviderConfig, validate_provider
from src.llm.errors import BackendError, ConfigurationError, ProviderConnectionError
from src.llm.factory import ProviderFactory
from src.llm.lifecycle import RequestLifecycleManager
from src.llm.providers import (
    AnthropicProvider,
    GeminiProvider,
    LMStudioProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
)
from tests.conftest import sse

IMAGE = "data:image/jpeg;base64,QUJD"


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def make(provider_cls, handler, name, base_url, model="m", api_key="key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = ProviderConfig(name=name, base_url=base_url, model=model, api_key=api_key)
    return provider_cls(config, RequestLifecycleManager(), client=client)


# --- validation ---

@pytest.mark.parametrize(
    "config, message",
    [
        (ProviderConfig("openai", "https://x", "m"), "No API key configured for openai"),
        (ProviderConfig("openai", "", "m", "k"), "No base URL configured for openai"),
        (ProviderConfig("openai", "https://x", "", "k"), "No model specified for openai"),
        (ProviderConfig("ollama", "http://localhost:11434", ""), "No model specified for ollama"),
    ],
)
def test_validation_errors(config, message):
    with pytest.raises(ConfigurationError, match=message):
        validate_provider(config)


def test_local_providers_need_no_key():
    validate_provider(ProviderConfig("ollama", "http://localhost:11434", "llama3.2"))
    validate_provider(ProviderConfig("lmstudio", "http://localhost:1234/v1", "local"))


def test_anthropic_key_prefix_only_warns():
    events = []
    from src.devlog import DevLog

    validate_provider(
        ProviderConfig("anthropic", "https://api.anthropic.com", "c", "bad-key"),
        DevLog(lambda *args: events.append(args)),
    )
    assert events and events[0][0] == "warn"


@pytest.mark.asyncio
async def test_invalid_config_makes_no_request():
    handler = Recorder()
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1", api_key="")
    with pytest.raises(ConfigurationError):
        provider.validate()
    assert handler.requests == []


# --- factory ---

def test_factory_lookup_and_fallback():
    assert ProviderFactory.provider_class("anthropic") is AnthropicProvider
    assert ProviderFactory.provider_class("gemini") is GeminiProvider
    assert ProviderFactory.provider_class("openrouter") is OpenRouterProvider
    assert ProviderFactory.provider_class("lmstudio") is LMStudioProvider
    assert ProviderFactory.provider_class("ollama") is OllamaProvider
    assert ProviderFactory.provider_class("my-vllm") is OpenAICompatibleProvider


# --- OpenAI-compatible ---

@pytest.mark.asyncio
async def test_openai_chat_round_trip():
    handler = Recorder(httpx.Response(200, json={
        "choices": [{"message": {"content": "hello"}}],
        "model": "m",
        "usage": {"prompt_tokens": 3, "completion_tokens": 1},
    }))
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://api.openai.test/v1/")
    result = await provider.chat([ChatMessage("user", "hi")])

    assert result.to_dict() == {
        "content": "hello",
        "model": "m",
        "provider": "openai",
        "usage": {"prompt_tokens": 3, "completion_tokens": 1},
    }
    request = handler.requests[0]
    assert len(handler.requests) == 1
    assert str(request.url) == "https://api.openai.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer key"
    assert handler.body["messages"] == [{"role": "user", "content": "hi"}]


def test_openai_image_content():
    provider = make(OpenAICompatibleProvider, Recorder(), "openai", "https://x")
    body = provider.build_request([ChatMessage("user", "what is this", image=IMAGE)])
    assert body["messages"][0]["content"] == [
        {"type": "text", "text": "what is this"},
        {"type": "image_url", "image_url": {"url": IMAGE, "detail": "low"}},
    ]


@pytest.mark.asyncio
async def test_openai_stream():
    body = sse(
        json.dumps({"choices": [{"delta": {"content": "A"}}]}),
        json.dumps({"choices": [{"delta": {"content": "B"}}]}),
        "[DONE]",
    )
    handler = Recorder(httpx.Response(200, content=body))
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1")
    assert [t async for t in provider.stream([ChatMessage("user", "hi")])] == ["A", "B"]
    assert handler.body["stream"] is True


@pytest.mark.asyncio
async def test_backend_error_carries_status_and_body():
    handler = Recorder(httpx.Response(401, text='{"error": "bad key"}'))
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1")
    with pytest.raises(BackendError) as exc_info:
        await provider.chat([ChatMessage("user", "hi")])
    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == 'OpenAI API error (401): {"error": "bad key"}'


@pytest.mark.asyncio
async def test_stream_backend_error():
    handler = Recorder(httpx.Response(500, text="boom"))
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1")
    with pytest.raises(BackendError, match=r"\(500\): boom"):
        [t async for t in provider.stream([ChatMessage("user", "hi")])]


@pytest.mark.asyncio
async def test_list_models_sorted_and_error_truncated():
    handler = Recorder(
        httpx.Response(200, json={"data": [{"id": "b"}, {"id": "a"}, {"id": "c"}]}),
        httpx.Response(500, text="x" * 500),
    )
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1")
    assert await provider.list_models() == ["a", "b", "c"]
    with pytest.raises(BackendError) as exc_info:
        await provider.list_models()
    assert exc_info.value.body == "x" * 200


@pytest.mark.asyncio
async def test_openrouter_attribution_headers():
    handler = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    provider = make(OpenRouterProvider, handler, "openrouter", "https://openrouter.test/api/v1")
    await provider.chat([ChatMessage("user", "hi")])
    assert handler.requests[0].headers["x-title"] == "Wayfarer"
    assert "http-referer" in handler.requests[0].headers


# --- local connection failures ---

@pytest.mark.asyncio
async def test_ollama_connection_refused_names_the_app():
    handler = Recorder(httpx.ConnectError("[Errno 111] Connection refused"))
    provider = make(OllamaProvider, handler, "ollama", "http://localhost:11434", api_key="")
    with pytest.raises(ProviderConnectionError) as exc_info:
        await provider.chat([ChatMessage("user", "hi")])
    message = str(exc_info.value)
    assert "Ollama" in message and "ollama serve" in message
    assert "http://localhost:11434" in message
    assert "Errno" not in message
    assert isinstance(exc_info.value, ConnectionError)


@pytest.mark.asyncio
async def test_lmstudio_connection_refused_names_the_app():
    handler = Recorder(httpx.ConnectError("refused"))
    provider = make(LMStudioProvider, handler, "lmstudio", "http://localhost:1234/v1", api_key="")
    with pytest.raises(ProviderConnectionError, match="LM Studio.*Start Server"):
        [t async for t in provider.stream([ChatMessage("user", "hi")])]


@pytest.mark.asyncio
async def test_remote_connection_errors_pass_through():
    handler = Recorder(httpx.ConnectError("refused"))
    provider = make(OpenAICompatibleProvider, handler, "openai", "https://x/v1")
    with pytest.raises(httpx.ConnectError):
        await provider.chat([ChatMessage("user", "hi")])


# --- Anthropic ---

@pytest.mark.asyncio
async def test_anthropic_request_shape():
    handler = Recorder(httpx.Response(200, json={
        "content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
        "model": "claude-test",
        "usage": {"input_tokens": 5, "output_tokens": 2},
    }))
    provider = make(AnthropicProvider, handler, "anthropic", "https://api.anthropic.test", api_key="sk-ant-x")
    result = await provider.chat([
        ChatMessage("system", "Be brief."),
        ChatMessage("system", "Be kind."),
        ChatMessage("user", "look", image=IMAGE),
    ])

    assert result.content == "Hi there"
    request = handler.requests[0]
    assert str(request.url) == "https://api.anthropic.test/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-x"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = handler.body
    assert body["system"] == "Be brief.\nBe kind."
    assert body["messages"] == [{
        "role": "user",
        "content": [
            {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"}},
            {"type": "text", "text": "look"},
        ],
    }]


@pytest.mark.asyncio
async def test_anthropic_stream():
    body = sse(
        json.dumps({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "X"}}),
        json.dumps({"type": "message_stop"}),
    )
    handler = Recorder(httpx.Response(200, content=body))
    provider = make(AnthropicProvider, handler, "anthropic", "https://a.test", api_key="sk-ant-x")
    assert [t async for t in provider.stream([ChatMessage("user", "hi")])] == ["X"]


# --- Gemini ---

@pytest.mark.asyncio
async def test_gemini_request_shape():
    handler = Recorder(httpx.Response(200, json={
        "candidates": [{"content": {"parts": [{"text": "Bonjour"}]}}],
        "usageMetadata": {"promptTokenCount": 4},
    }))
    provider = make(GeminiProvider, handler, "gemini", "https://gemini.test/v1beta", model="gemini-2.0-flash", api_key="g")
    result = await provider.chat([
        ChatMessage("system", "Translate."),
        ChatMessage("user", "Hello"),
        ChatMessage("assistant", "Bonjour"),
        ChatMessage("user", "Again", image=IMAGE),
    ])

    assert result.content == "Bonjour"
    assert result.model == "gemini-2.0-flash"
    request = handler.requests[0]
    assert request.url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert request.url.params["key"] == "g"
    body = handler.body
    assert body["systemInstruction"] == {"parts": [{"text": "Translate."}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["contents"][2]["parts"][1] == {"inlineData": {"mimeType": "image/jpeg", "data": "QUJD"}}


@pytest.mark.asyncio
async def test_gemini_empty_reply_placeholder():
    handler = Recorder(httpx.Response(200, json={"candidates": []}))
    provider = make(GeminiProvider, handler, "gemini", "https://g.test", api_key="g")
    result = await provider.chat([ChatMessage("user", "hi")])
    assert result.content == "No response generated."


@pytest.mark.asyncio
async def test_gemini_stream_uses_sse():
    body = sse(json.dumps({"candidates": [{"content": {"parts": [{"text": "a"}]}}]}))
    handler = Recorder(httpx.Response(200, content=body))
    provider = make(GeminiProvider, handler, "gemini", "https://g.test", api_key="g")
    assert [t async for t in provider.stream([ChatMessage("user", "hi")])] == ["a"]
    assert handler.requests[0].url.params["alt"] == "sse"


@pytest.mark.asyncio
async def test_gemini_list_models():
    handler = Recorder(httpx.Response(200, json={"models": [
        {"name": "models/gemini-pro"}, {"name": "models/embedding-001"}, {"name": "models/gemini-2.0-flash"},
    ]}))
    provider = make(GeminiProvider, handler, "gemini", "https://g.test", api_key="g")
    assert await provider.list_models() == ["gemini-2.0-flash", "gemini-pro"]

    keyless = make(GeminiProvider, Recorder(), "gemini", "https://g.test", api_key="")
    with pytest.raises(ConfigurationError):
        await keyless.list_models()


# --- Ollama ---

@pytest.mark.asyncio
async def test_ollama_chat_and_tags():
    handler = Recorder(
        httpx.Response(200, json={"message": {"content": "yo"}, "model": "llama3.2", "prompt_eval_count": 7, "eval_count": 2}),
        httpx.Response(200, json={"models": [{"name": "qwen"}, {"name": "llama3.2"}]}),
    )
    provider = make(OllamaProvider, handler, "ollama", "http://localhost:11434", model="llama3.2", api_key="")
    result = await provider.chat([ChatMessage("user", "hi", image=IMAGE)])
    assert result.usage == {"prompt_tokens": 7, "completion_tokens": 2}
    assert json.loads(handler.requests[0].content)["messages"][0]["images"] == ["QUJD"]
    assert json.loads(handler.requests[0].content)["stream"] is False
    assert await provider.list_models() == ["llama3.2", "qwen"]


@pytest.mark.asyncio
async def test_ollama_stream():
    body = b'{"message":{"content":"a"},"done":false}\n{"message":{"content":"b"},"done":true}\n'
    handler = Recorder(httpx.Response(200, content=body))
    provider = make(OllamaProvider, handler, "ollama", "http://localhost:11434", api_key="")
    assert [t async for t in provider.stream([ChatMessage("user", "hi")])] == ["a", "b"]
