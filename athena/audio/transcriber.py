"""Speech-to-text powered by faster-whisper."""

from __future__ import annotations

import numpy as np
from faster_whisper import WhisperModel


class FasterWhisperASR:
    """Transcribe PCM16 buffers with a WhisperModel."""

    def __init__(self, model: str, device: str = "cpu", compute_type: str = "int8") -> None:
        self._model = WhisperModel(model, device=device, compute_type=compute_type)

    def transcribe_pcm16(self, pcm_data: bytes, sample_rate: int, *, language: str | None = "en") -> str:
        if not pcm_data:
            return ""
        audio = np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) / 32768.0
        if sample_rate != 16_000:
            # faster-whisper expects 16 kHz mono float samples
            target = int(len(audio) * 16_000 / sample_rate)
            audio = np.interp(
                np.linspace(0, len(audio), num=target, endpoint=False),
                np.arange(len(audio)),
                audio,
            ).astype(np.float32)
        audio = self._trim_silence(audio)
        if not len(audio):
            return ""
        segments, _info = self._model.transcribe(
            audio,
            language=language,
            vad_filter=True,
            vad_parameters={"min_silence_duration_ms": 250},
        )
        return " ".join(segment.text.strip() for segment in segments if segment.text.strip()).strip()

    @staticmethod
    def _trim_silence(samples: np.ndarray, threshold: float = 0.01) -> np.ndarray:
        """Remove leading/trailing silence to speed up inference."""
        if samples.size == 0:
            return samples
        indices = np.where(np.abs(samples) > threshold)[0]
        if indices.size == 0:
            return np.array([], dtype=samples.dtype)
        start = max(int(indices[0]) - 1600, 0)
        end = min(int(indices[-1]) + 1600, samples.size)
        return samples[start:end]
