from __future__ import annotations

import base64
import json

import httpx
import pytest

from athena.core.config import Settings
from athena.core.errors import GenerationError
from athena.core.models import Attachment, AttachmentKind, Message, Role, VoicePreference
from athena.services.analysis import DocumentAnalysis, DocumentAnalyzer
from athena.services.gemini import GeminiClient, build_prompt, split_data_uri
from athena.voice.engines import decode_wav_data_uri


def _install_client(monkeypatch, body: dict[str, object], *, status_code: int = 200) -> dict[str, object]:
    captured: dict[str, object] = {}

    class DummyResponse:
        reason_phrase = "OK" if status_code == 200 else "Error"

        def __init__(self) -> None:
            self.status_code = status_code

        def raise_for_status(self) -> None:
            if self.status_code >= 400:
                request = httpx.Request("POST", str(captured["url"]))
                response = httpx.Response(self.status_code, text="quota exceeded", request=request)
                raise httpx.HTTPStatusError("error", request=request, response=response)

        def json(self) -> dict[str, object]:
            return body

        @property
        def text(self) -> str:
            return json.dumps(body)

    class DummyClient:
        def __init__(self, *args, **kwargs):
            captured["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url: str, *, json: dict[str, object] | None = None, headers: dict[str, str] | None = None):
            captured["url"] = url
            captured["payload"] = json or {}
            captured["headers"] = headers or {}
            return DummyResponse()

    monkeypatch.setattr(httpx, "AsyncClient", lambda *args, **kwargs: DummyClient(*args, **kwargs))
    return captured


def _text_body(text: str) -> dict[str, object]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_build_prompt_uses_recent_history() -> None:
    history = [Message(id=str(i), role=Role.USER, content=f"m{i}", timestamp=i) for i in range(7)]
    prompt = build_prompt(history, "latest", persona="PERSONA", window=5)
    assert prompt.startswith("PERSONA")
    assert "m1" not in prompt and "user: m2" in prompt and "user: m6" in prompt
    assert prompt.endswith("user: latest")
    assert "No history yet." in build_prompt([], "hi", persona="P", window=5)


def test_split_data_uri() -> None:
    assert split_data_uri("data:image/png;base64,AAAA") == ("image/png", "AAAA")
    with pytest.raises(ValueError):
        split_data_uri("https://example.com/cat.png")


@pytest.mark.asyncio
async def test_generate_reply_requires_api_key() -> None:
    client = GeminiClient(Settings(google_api_key=None))
    with pytest.raises(GenerationError):
        await client.generate_reply([], "ping")


@pytest.mark.asyncio
async def test_generate_reply_success(monkeypatch) -> None:
    captured = _install_client(monkeypatch, _text_body("pong"))
    settings = Settings(
        google_api_key="secret-key",
        gemini_base_url="http://localhost:9999/v1beta/",
        gemini_model="demo-model",
        generation_temperature=0.3,
    )
    image = Attachment(name="cat.png", kind=AttachmentKind.IMAGE, content="data:image/png;base64,AAAA")
    reply = await GeminiClient(settings).generate_reply([], "ping", [image])

    assert reply == "pong"
    assert captured["url"] == "http://localhost:9999/v1beta/models/demo-model:generateContent"
    assert captured["headers"]["x-goog-api-key"] == "secret-key"
    payload = captured["payload"]
    parts = payload["contents"][0]["parts"]
    assert parts[0]["text"].endswith("user: ping")
    assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": "AAAA"}}
    assert payload["generationConfig"]["temperature"] == 0.3


@pytest.mark.asyncio
async def test_generate_reply_empty_answer_is_an_error(monkeypatch) -> None:
    _install_client(monkeypatch, {"candidates": []})
    with pytest.raises(GenerationError):
        await GeminiClient(Settings(google_api_key="k")).generate_reply([], "ping")


@pytest.mark.asyncio
async def test_http_error_is_wrapped(monkeypatch) -> None:
    _install_client(monkeypatch, {}, status_code=429)
    with pytest.raises(GenerationError) as info:
        await GeminiClient(Settings(google_api_key="k")).generate_reply([], "ping")
    assert "429" in str(info.value)


@pytest.mark.asyncio
async def test_text_to_speech_returns_wav_data_uri(monkeypatch) -> None:
    pcm = b"\x10\x00\x20\x00" * 8
    body = {"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "audio/L16", "data": base64.b64encode(pcm).decode()}}]}}]}
    captured = _install_client(monkeypatch, body)
    settings = Settings(google_api_key="k", gemini_tts_model="tts-model", tts_voice_male="Algenib")

    uri = await GeminiClient(settings).text_to_speech("hello", VoicePreference.MALE)

    assert uri is not None and uri.startswith("data:audio/wav;base64,")
    speech = decode_wav_data_uri(uri)
    assert speech.pcm == pcm and speech.sample_rate == 24_000
    assert captured["url"].endswith("/models/tts-model:generateContent")
    voice = captured["payload"]["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
    assert voice == {"voiceName": "Algenib"}


@pytest.mark.asyncio
async def test_text_to_speech_failure_returns_none(monkeypatch) -> None:
    _install_client(monkeypatch, {}, status_code=500)
    assert await GeminiClient(Settings(google_api_key="k")).text_to_speech("hello") is None
    assert await GeminiClient(Settings(google_api_key="k")).text_to_speech("   ") is None


class CannedJsonClient:
    def __init__(self, *answers: str) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def generate_json(self, prompt: str, *, temperature: float = 0.2) -> str:
        self.prompts.append(prompt)
        return self.answers.pop(0)


@pytest.mark.asyncio
async def test_analyzer_parses_structured_output() -> None:
    client = CannedJsonClient('{"summary": "Short", "patterns": "Repeats", "answers": null}')
    analysis = await DocumentAnalyzer(client).analyze("long text", query="What repeats?")
    assert analysis == DocumentAnalysis(summary="Short", patterns="Repeats", answers=None)
    assert analysis.to_context() == "Summary: Short\nPatterns: Repeats"
    assert "What repeats?" in client.prompts[0]


@pytest.mark.asyncio
async def test_analyzer_rejects_malformed_output() -> None:
    analyzer = DocumentAnalyzer(CannedJsonClient("not json", '{"patterns": "x"}'))
    with pytest.raises(GenerationError):
        await analyzer.analyze("text")
    with pytest.raises(GenerationError):
        await analyzer.analyze("text")


@pytest.mark.asyncio
async def test_summary_and_resources() -> None:
    analyzer = DocumentAnalyzer(CannedJsonClient('{"summary": "tl;dr"}', '{"resources": ["https://a", "https://b"]}'))
    assert await analyzer.summarize("text") == "tl;dr"
    assert await analyzer.suggest_resources("user: hi") == ["https://a", "https://b"]
