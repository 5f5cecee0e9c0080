"""On-device text-to-speech with Piper."""

from __future__ import annotations

import unicodedata
from pathlib import Path

from piper import PiperVoice, SynthesisConfig


def clean_for_piper(text: str) -> str:
    """Drop combining marks and tildes that voices have no phonemes for."""
    decomposed = unicodedata.normalize("NFD", text)
    kept = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", kept.replace("~", ""))


class PiperTTS:
    """One loaded Piper voice (``<name>.onnx`` next to ``<name>.onnx.json``)."""

    def __init__(self, model_path: Path, *, length_scale: float = 1.0) -> None:
        model_path = Path(model_path)
        config_path = model_path.with_suffix(".onnx.json")
        for path in (model_path, config_path):
            if not path.exists():
                raise FileNotFoundError(f"Piper voice file missing: {path}")
        self.model_path = model_path
        self._voice = PiperVoice.load(str(model_path), str(config_path))
        self._syn_config = SynthesisConfig(length_scale=length_scale) if length_scale != 1.0 else None

    @property
    def sample_rate(self) -> int:
        return self._voice.config.sample_rate

    def synthesize(self, text: str) -> tuple[bytes, int, int]:
        """Return ``(pcm16, sample_rate, channels)`` for the whole text."""
        text = clean_for_piper(text)
        if not text.strip():
            return b"", self.sample_rate, 1
        channels = 1
        pcm = bytearray()
        for chunk in self._voice.synthesize(text, syn_config=self._syn_config):
            pcm += chunk.audio_int16_bytes
            channels = chunk.sample_channels or 1
        return bytes(pcm), self.sample_rate, channels
