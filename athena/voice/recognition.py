"""Speech-to-text sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from athena.core.config import Settings
from athena.core.errors import RecognitionError, SpeechUnavailableError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptEvent:
    """Interim or final transcript for the current utterance."""

    text: str
    final: bool = False
    confidence: Optional[float] = None


class RecognitionListener(Protocol):
    """Callbacks of one recognition session, always invoked on the event loop."""

    def on_transcript(self, event: TranscriptEvent) -> None: ...

    def on_error(self, error: RecognitionError) -> None: ...

    def on_end(self) -> None: ...


class Recognizer(Protocol):
    """Continuous recognition of a single spoken utterance."""

    @property
    def active(self) -> bool: ...

    def start(self, listener: RecognitionListener) -> None:
        """Begin capture. Raises SpeechUnavailableError when unsupported."""

    def stop(self) -> None:
        """Stop capture and deliver the final transcript, then ``on_end``."""

    def abort(self) -> None:
        """Stop immediately; no further callbacks are delivered."""


class WhisperRecognizer:
    """Microphone capture transcribed with faster-whisper when the utterance ends.

    The utterance ends when ``stop()`` is called or after
    ``asr_max_utterance_sec`` seconds of capture.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.max_utterance_sec = settings.asr_max_utterance_sec
        self._capture = None
        self._asr = None
        self._listener: RecognitionListener | None = None
        self._frames: list[bytes] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._finish_task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._listener is not None

    def start(self, listener: RecognitionListener) -> None:
        if self.active:
            raise RecognitionError("busy", "a recognition session is already running")
        capture = self._ensure_capture()
        self._loop = asyncio.get_running_loop()
        self._frames = []
        self._listener = listener
        try:
            capture.start(self._handle_frame)
        except Exception as exc:
            self._listener = None
            raise RecognitionError("audio-capture", str(exc)) from exc
        self._timer = self._loop.call_later(self.max_utterance_sec, self.stop)
        LOGGER.info("recognition started")

    def stop(self) -> None:
        if not self.active or self._finish_task is not None:
            return
        self._halt_capture()
        pcm = b"".join(self._frames)
        self._frames = []
        assert self._loop is not None
        self._finish_task = self._loop.create_task(self._finish(pcm))

    def abort(self) -> None:
        self._halt_capture()
        self._frames = []
        self._listener = None
        if self._finish_task is not None:
            self._finish_task.cancel()
            self._finish_task = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_capture(self):
        if self._capture is None:
            try:
                from athena.audio.capture import CaptureConfig, MicrophoneCapture
            except (ImportError, OSError) as exc:
                raise SpeechUnavailableError(f"microphone capture unavailable: {exc}") from exc
            self._capture = MicrophoneCapture(
                CaptureConfig(
                    sample_rate=self.settings.capture_sample_rate,
                    device_name=self.settings.capture_device,
                )
            )
        return self._capture

    def _ensure_asr(self):
        if self._asr is None:
            try:
                from athena.audio.transcriber import FasterWhisperASR
            except ImportError as exc:
                raise SpeechUnavailableError(f"faster-whisper unavailable: {exc}") from exc
            self._asr = FasterWhisperASR(
                self.settings.asr_model,
                device=self.settings.asr_device,
                compute_type=self.settings.asr_compute_type,
            )
        return self._asr

    def _handle_frame(self, frame: bytes) -> None:
        """Receive frames from the sounddevice thread."""
        loop = self._loop
        if loop is None or not self.active:
            return
        try:
            loop.call_soon_threadsafe(self._frames.append, frame)
        except RuntimeError:  # pragma: no cover - loop closed
            pass

    def _halt_capture(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._capture is not None:
            self._capture.stop()

    async def _finish(self, pcm: bytes) -> None:
        listener = self._listener
        try:
            if pcm and listener is not None:
                asr = self._ensure_asr()
                loop = asyncio.get_running_loop()
                text = await loop.run_in_executor(
                    None,
                    lambda: asr.transcribe_pcm16(pcm, self.settings.capture_sample_rate, language=self.settings.asr_language),
                )
                if text and self._listener is listener:
                    listener.on_transcript(TranscriptEvent(text=text, final=True))
        except asyncio.CancelledError:
            raise
        except SpeechUnavailableError as exc:
            if self._listener is listener and listener is not None:
                listener.on_error(RecognitionError("service-not-allowed", str(exc)))
        except Exception as exc:
            LOGGER.warning("transcription failed: %r", exc)
            if self._listener is listener and listener is not None:
                listener.on_error(RecognitionError("transcription", str(exc)))
        finally:
            if self._listener is listener:
                self._listener = None
                self._finish_task = None
                if listener is not None:
                    listener.on_end()
