"""Exclusive speech output channel shared by the whole voice subsystem."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from athena.core.errors import PlaybackError
from athena.core.models import VoicePreference

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SpeakOptions:
    """Per-utterance settings and lifecycle callbacks."""

    voice_gender: VoicePreference = VoicePreference.FEMALE
    on_start: Optional[Callable[[], None]] = None
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


@dataclass(slots=True)
class RenderedSpeech:
    """PCM16 audio ready for playback."""

    pcm: bytes
    sample_rate: int
    channels: int = 1

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0 or self.channels <= 0:
            return 0.0
        return len(self.pcm) / (self.sample_rate * self.channels * 2)


class SpeechEngine(Protocol):
    """Turns text into audio (on-device or server-generated)."""

    name: str

    async def render(self, text: str, voice: VoicePreference) -> RenderedSpeech: ...


class AudioOutput(Protocol):
    """Speaker device."""

    def play(self, pcm_data: bytes, sample_rate: int, channels: int = 1) -> None: ...

    def stop(self) -> None: ...


def sanitize_for_speech(text: str) -> str:
    cleaned = re.sub(r"```.*?```", " ", text, flags=re.DOTALL)
    cleaned = re.sub(r"[*_`#<>]", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip()


class SpeechOutputChannel:
    """Plays one utterance at a time.

    Starting an utterance cancels the one in progress. A cancelled utterance
    stops the device immediately and fires none of its callbacks.
    """

    def __init__(
        self,
        engine: SpeechEngine | None,
        output: AudioOutput | None,
        *,
        tail_sec: float = 0.15,
    ) -> None:
        self.engine = engine
        self.output = output
        self.tail_sec = tail_sec
        self._task: asyncio.Task[None] | None = None

    @property
    def supported(self) -> bool:
        return self.engine is not None and self.output is not None

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, text: str, options: SpeakOptions | None = None) -> asyncio.Task[None] | None:
        """Start speaking ``text``; returns the playback task."""
        options = options or SpeakOptions()
        if not self.supported:
            raise PlaybackError("speech synthesis is not available")
        self.cancel()
        spoken = sanitize_for_speech(text)
        if not spoken:
            return None
        task = asyncio.get_running_loop().create_task(self._run(spoken, options))
        self._task = task
        return task

    def cancel(self) -> bool:
        """Stop the current utterance. Returns True when something was playing."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        if self.output is not None:
            self.output.stop()
        return True

    async def wait(self) -> None:
        """Wait for the current utterance to finish (or be cancelled)."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, text: str, options: SpeakOptions) -> None:
        assert self.engine is not None and self.output is not None
        current = asyncio.current_task()
        try:
            speech = await self.engine.render(text, options.voice_gender)
            if not speech.pcm:
                raise PlaybackError(f"{self.engine.name} engine produced no audio")
            self.output.play(speech.pcm, speech.sample_rate, speech.channels)
            _invoke(options.on_start)
            await asyncio.sleep(speech.duration + self.tail_sec)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("speech playback failed: %r", exc)
            self.output.stop()
            if self._task is current:
                self._task = None
            if options.on_error is not None:
                _invoke(lambda: options.on_error(exc))
            return
        if self._task is current:
            self._task = None
        _invoke(options.on_end)


def _invoke(callback: Optional[Callable[[], None]]) -> None:
    if callback is None:
        return
    try:
        callback()
    except Exception:
        LOGGER.exception("speech callback failed")
