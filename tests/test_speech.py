import base64
import json

import httpx
import pytest

from src.devlog import DevLog
from src.llm.errors import BackendError, ConfigurationError, ProviderConnectionError
from src.llm.lifecycle import RequestLifecycleManager
from src.llm.speech import SpeechToText, SttConfig


def make_stt(handler) -> SpeechToText:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpeechToText(RequestLifecycleManager(), client, DevLog())


@pytest.mark.asyncio
async def test_whisper_posts_multipart_upload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.content
        seen["type"] = request.headers["content-type"]
        return httpx.Response(200, json={"text": "hello there"})

    stt = make_stt(handler)
    config = SttConfig(provider="openai", api_key="sk-1", base_url="https://api.openai.test/v1", language="fr")
    text = await stt.transcribe(b"\x1a\x45audio", "audio/webm", config)

    assert text == "hello there"
    assert seen["url"] == "https://api.openai.test/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer sk-1"
    assert seen["type"].startswith("multipart/form-data")
    assert b'filename="recording.webm"' in seen["body"]
    assert b"whisper-1" in seen["body"]
    assert b"fr" in seen["body"]


@pytest.mark.asyncio
async def test_whisper_requires_key():
    stt = make_stt(lambda r: httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError, match="No API key for OpenAI Whisper"):
        await stt.transcribe(b"x", "audio/webm", SttConfig(provider="openai"))


@pytest.mark.asyncio
async def test_gemini_sends_inline_audio():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "bonjour"}]}}]})

    stt = make_stt(handler)
    config = SttConfig(provider="gemini", api_key="g-key", base_url="https://gemini.test/v1beta")
    assert await stt.transcribe(b"abc", "audio/ogg", config) == "bonjour"

    assert seen["url"].path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert seen["url"].params["key"] == "g-key"
    inline = seen["body"]["contents"][0]["parts"][1]["inlineData"]
    assert inline == {"mimeType": "audio/ogg", "data": base64.b64encode(b"abc").decode()}


@pytest.mark.asyncio
async def test_gemini_without_candidates_is_empty_text():
    stt = make_stt(lambda r: httpx.Response(200, json={}))
    assert await stt.transcribe(b"abc", "audio/ogg", SttConfig(provider="gemini", api_key="k")) == ""


@pytest.mark.asyncio
async def test_unknown_provider_is_a_configuration_error():
    stt = make_stt(lambda r: httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError, match="Unknown STT provider: azure"):
        await stt.transcribe(b"x", "audio/webm", SttConfig(provider="azure", api_key="k"))
    with pytest.raises(ConfigurationError):
        await stt.list_models("azure", "k")


@pytest.mark.asyncio
async def test_lmstudio_unreachable_is_a_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    stt = make_stt(handler)
    with pytest.raises(ProviderConnectionError, match="Cannot connect to lmstudio STT API"):
        await stt.transcribe(b"x", "audio/webm", SttConfig(provider="lmstudio"))


@pytest.mark.asyncio
async def test_backend_rejection_carries_status():
    stt = make_stt(lambda r: httpx.Response(401, text="bad key"))
    with pytest.raises(BackendError) as exc_info:
        await stt.transcribe(b"x", "audio/webm", SttConfig(provider="openai", api_key="k"))
    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "Whisper API error (401): bad key"


@pytest.mark.asyncio
async def test_openai_models_filtered_to_voice():
    payload = {"data": [{"id": "gpt-4o"}, {"id": "whisper-1"}, {"id": "tts-1"}, {"id": "dall-e-3"}]}
    stt = make_stt(lambda r: httpx.Response(200, json=payload))
    assert await stt.list_models("openai", "sk") == ["tts-1", "whisper-1"]


@pytest.mark.asyncio
async def test_gemini_models_strip_prefix():
    payload = {"models": [{"name": "models/gemini-2.0-flash"}, {"name": "models/embedding-001"}]}
    stt = make_stt(lambda r: httpx.Response(200, json=payload))
    assert await stt.list_models("gemini", "k") == ["gemini-2.0-flash"]


@pytest.mark.asyncio
async def test_listing_requires_key_except_lmstudio():
    stt = make_stt(lambda r: httpx.Response(200, json={"data": [{"id": "local-whisper"}]}))
    with pytest.raises(ConfigurationError, match="OpenAI API key is required"):
        await stt.list_models("openai")
    assert await stt.list_models("lmstudio") == ["local-whisper"]


@pytest.mark.asyncio
async def test_service_borrows_chat_provider_key(make_service, store):
    auth = []

    def handler(request):
        auth.append(request.headers.get("authorization"))
        return httpx.Response(200, json={"text": "ok"})

    service = make_service(handler)
    store.set("stt_settings", {
        "provider": "openai",
        "key_source": "openai",
        "base_url": "https://api.openai.test/v1",
        "api_key": "ignored",
    })

    assert await service.transcribe(b"x") == "ok"
    assert auth == ["Bearer sk-test"]

    config = service.stt_config({"key_source": "custom", "api_key": "own-key"})
    assert config.api_key == "own-key"
