"""Microphone capture."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import sounddevice as sd

LOGGER = logging.getLogger(__name__)

FrameConsumer = Callable[[bytes], None]


@dataclass(slots=True)
class CaptureConfig:
    """Input stream parameters."""

    sample_rate: int = 16_000
    channels: int = 1
    frame_duration_ms: int = 30
    device_name: str | None = None

    @property
    def frame_size(self) -> int:
        return int(self.sample_rate * self.frame_duration_ms / 1000)


class MicrophoneCapture:
    """Streams fixed-size PCM16 frames to a consumer on the audio thread."""

    def __init__(self, config: CaptureConfig | None = None) -> None:
        self.config = config or CaptureConfig()
        self._stream: sd.RawInputStream | None = None
        self._consumer: FrameConsumer | None = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self, consumer: FrameConsumer) -> None:
        if self._stream is not None:
            raise RuntimeError("microphone capture is already running")
        stream = sd.RawInputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            blocksize=self.config.frame_size,
            callback=self._on_frame,
            device=self.config.device_name,
        )
        self._consumer = consumer
        try:
            stream.start()
        except Exception:
            self._consumer = None
            stream.close()
            raise
        self._stream = stream
        LOGGER.debug("capture started at %d Hz", self.config.sample_rate)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        self._consumer = None
        if stream is None:
            return
        stream.stop()
        stream.close()
        LOGGER.debug("capture stopped")

    def _on_frame(self, indata, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("input status: %s", status)
        consumer = self._consumer
        if consumer is not None:
            consumer(bytes(indata))
