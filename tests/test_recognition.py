from __future__ import annotations

import asyncio

import pytest

from athena.core.config import Settings
from athena.core.errors import RecognitionError
from athena.voice.recognition import TranscriptEvent, WhisperRecognizer


class FakeCapture:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.running = False
        self.consumer = None

    def start(self, consumer) -> None:
        if self.fail:
            raise OSError("no input device")
        self.running = True
        self.consumer = consumer

    def stop(self) -> None:
        self.running = False
        self.consumer = None


class FakeASR:
    def __init__(self, text: str = "hello there", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.received: list[tuple[bytes, int]] = []

    def transcribe_pcm16(self, pcm_data: bytes, sample_rate: int, *, language: str | None = "en") -> str:
        self.received.append((pcm_data, sample_rate))
        if self.error is not None:
            raise self.error
        return self.text


class Listener:
    def __init__(self) -> None:
        self.events: list[object] = []

    def on_transcript(self, event: TranscriptEvent) -> None:
        self.events.append(event)

    def on_error(self, error: RecognitionError) -> None:
        self.events.append(error.kind)

    def on_end(self) -> None:
        self.events.append("end")


def _recognizer(capture: FakeCapture, asr: FakeASR, **overrides) -> WhisperRecognizer:
    recognizer = WhisperRecognizer(Settings(**overrides))
    recognizer._capture = capture
    recognizer._asr = asr
    return recognizer


async def _settle(recognizer: WhisperRecognizer) -> None:
    task = recognizer._finish_task
    if task is not None:
        await task


@pytest.mark.asyncio
async def test_stop_delivers_final_transcript_then_end() -> None:
    capture, asr = FakeCapture(), FakeASR()
    recognizer = _recognizer(capture, asr)
    listener = Listener()

    recognizer.start(listener)
    assert recognizer.active and capture.running
    capture.consumer(b"\x01\x00" * 160)
    capture.consumer(b"\x02\x00" * 160)
    await asyncio.sleep(0)
    recognizer.stop()
    await _settle(recognizer)

    assert not capture.running
    assert listener.events[0] == TranscriptEvent(text="hello there", final=True)
    assert listener.events[1:] == ["end"]
    assert asr.received == [(b"\x01\x00" * 160 + b"\x02\x00" * 160, 16_000)]
    assert not recognizer.active


@pytest.mark.asyncio
async def test_second_session_is_refused() -> None:
    recognizer = _recognizer(FakeCapture(), FakeASR())
    recognizer.start(Listener())
    with pytest.raises(RecognitionError):
        recognizer.start(Listener())
    recognizer.abort()


@pytest.mark.asyncio
async def test_abort_delivers_nothing() -> None:
    recognizer = _recognizer(FakeCapture(), FakeASR())
    listener = Listener()
    recognizer.start(listener)
    recognizer._handle_frame(b"\x01\x00")
    recognizer.abort()
    await asyncio.sleep(0.01)
    assert listener.events == []
    assert not recognizer.active


@pytest.mark.asyncio
async def test_silence_ends_without_transcript() -> None:
    asr = FakeASR()
    recognizer = _recognizer(FakeCapture(), asr)
    listener = Listener()
    recognizer.start(listener)
    recognizer.stop()
    await _settle(recognizer)
    assert listener.events == ["end"]
    assert asr.received == []


@pytest.mark.asyncio
async def test_transcription_error_is_reported() -> None:
    recognizer = _recognizer(FakeCapture(), FakeASR(error=RuntimeError("model crashed")))
    listener = Listener()
    recognizer.start(listener)
    recognizer._handle_frame(b"\x01\x00")
    await asyncio.sleep(0)
    recognizer.stop()
    await _settle(recognizer)
    assert listener.events == ["transcription", "end"]


@pytest.mark.asyncio
async def test_capture_failure_raises_recognition_error() -> None:
    recognizer = _recognizer(FakeCapture(fail=True), FakeASR())
    with pytest.raises(RecognitionError) as info:
        recognizer.start(Listener())
    assert info.value.kind == "audio-capture"
    assert not recognizer.active


@pytest.mark.asyncio
async def test_utterance_stops_after_limit() -> None:
    recognizer = _recognizer(FakeCapture(), FakeASR(), asr_max_utterance_sec=0.01)
    listener = Listener()
    recognizer.start(listener)
    recognizer._handle_frame(b"\x01\x00")
    await asyncio.sleep(0.05)
    await _settle(recognizer)
    assert listener.events[-1] == "end"
    assert isinstance(listener.events[0], TranscriptEvent)
