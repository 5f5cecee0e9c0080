from __future__ import annotations

import asyncio
import os
import tempfile

# Category loggers create their log directory at import time.
os.environ.setdefault("ATHENA_LOG_DIR", tempfile.mkdtemp(prefix="athena-logs-"))

import pytest

from athena.core.config import Settings
from athena.core.controller import ConversationController
from athena.core.errors import GenerationError, Notification, RecognitionError
from athena.core.models import VoicePreference
from athena.core.session import ChatSession
from athena.core.store import MemoryStore
from athena.voice.output import RenderedSpeech
from athena.voice.recognition import TranscriptEvent


class StubGenerator:
    """Reply generator returning canned replies in order."""

    def __init__(self, *replies: str) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, object]] = []

    async def generate_reply(self, history, message, images):
        self.calls.append({"history": list(history), "message": message, "images": list(images)})
        if not self.replies:
            raise GenerationError("no canned reply left")
        return self.replies.pop(0)


class FailingGenerator:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_reply(self, history, message, images):
        self.calls += 1
        raise GenerationError("service unavailable")


class GatedGenerator:
    """Blocks until ``release()`` so tests can act while a reply is in flight."""

    def __init__(self, reply: str = "late reply") -> None:
        self.reply = reply
        self.gate = asyncio.Event()
        self.calls = 0

    def release(self) -> None:
        self.gate.set()

    async def generate_reply(self, history, message, images):
        self.calls += 1
        await self.gate.wait()
        return self.reply


class FakeEngine:
    name = "fake"

    def __init__(self, seconds: float = 0.05, sample_rate: int = 16_000) -> None:
        self.seconds = seconds
        self.sample_rate = sample_rate
        self.rendered: list[tuple[str, VoicePreference]] = []

    async def render(self, text, voice):
        self.rendered.append((text, voice))
        frames = int(self.seconds * self.sample_rate)
        return RenderedSpeech(pcm=b"\x00\x00" * frames, sample_rate=self.sample_rate)


class FakeAudioOutput:
    def __init__(self) -> None:
        self.played: list[int] = []
        self.stops = 0

    def play(self, pcm_data, sample_rate, channels=1):
        self.played.append(len(pcm_data))

    def stop(self):
        self.stops += 1


class FakeRecognizer:
    def __init__(self) -> None:
        self.listener = None
        self.started = 0
        self.stopped = 0
        self.aborted = 0

    @property
    def active(self) -> bool:
        return self.listener is not None

    def start(self, listener) -> None:
        self.listener = listener
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def abort(self) -> None:
        self.aborted += 1
        self.listener = None

    def say(self, text: str) -> None:
        self.listener.on_transcript(TranscriptEvent(text=text, final=True))

    def end(self) -> None:
        listener, self.listener = self.listener, None
        listener.on_end()

    def fail(self, kind: str) -> None:
        listener, self.listener = self.listener, None
        listener.on_error(RecognitionError(kind))
        listener.on_end()


@pytest.fixture()
def settings() -> Settings:
    return Settings(reply_timeout_sec=1.0, reply_retries=1, google_api_key=None, analyze_documents=False)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def session(store: MemoryStore) -> ChatSession:
    return ChatSession(store).load()


@pytest.fixture()
def notes() -> list[Notification]:
    return []


@pytest.fixture()
def make_controller(session, settings, notes):
    def _make(generator, **kwargs) -> ConversationController:
        return ConversationController(session, generator, notify=notes.append, settings=settings, **kwargs)

    return _make
