"""Speaker output for synthesized speech."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import sounddevice as sd

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlaybackConfig:
    sample_rate: int = 24_000
    channels: int = 1
    device_name: str | None = None


class SpeechPlayback:
    """Feeds queued PCM16 bytes to a raw output stream, padding with silence."""

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()
        self._pending = bytearray()
        self._lock = threading.Lock()
        self._stream: sd.RawOutputStream | None = None

    def play(self, pcm_data: bytes, sample_rate: int, channels: int = 1) -> None:
        """Queue audio; a different format replaces the open stream."""
        if not pcm_data:
            return
        if (sample_rate, channels) != (self.config.sample_rate, self.config.channels):
            self.stop()
            self.config.sample_rate = sample_rate
            self.config.channels = channels
        with self._lock:
            self._pending.extend(pcm_data)
        if self._stream is None:
            self._stream = self._open()

    def stop(self) -> None:
        """Drop queued audio and close the device."""
        stream, self._stream = self._stream, None
        with self._lock:
            self._pending.clear()
        # close outside the lock: it waits for the running callback
        if stream is not None:
            stream.stop()
            stream.close()

    def _open(self) -> sd.RawOutputStream:
        stream = sd.RawOutputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            callback=self._fill,
            device=self.config.device_name,
        )
        stream.start()
        return stream

    def _fill(self, outdata, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("output status: %s", status)
        size = len(outdata)
        with self._lock:
            chunk = bytes(self._pending[:size])
            del self._pending[:size]
        outdata[: len(chunk)] = chunk
        if len(chunk) < size:
            outdata[len(chunk) :] = b"\x00" * (size - len(chunk))
