"""Interchangeable speech engines and the factory wiring them to a speaker."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import re
import threading
import wave
from pathlib import Path
from typing import Sequence

from athena.core.config import Settings
from athena.core.errors import PlaybackError, SpeechUnavailableError
from athena.core.models import VoicePreference
from athena.services.gemini import GeminiClient, split_data_uri
from athena.voice.output import AudioOutput, RenderedSpeech, SpeechEngine, SpeechOutputChannel

LOGGER = logging.getLogger(__name__)


def select_voice(names: Sequence[str], hints: Sequence[str]) -> int | None:
    """Best-effort pick of the voice whose name matches a gender hint.

    Returns the index of the first name containing a hint (hints are tried
    in order), the first voice when nothing matches, or None without voices.
    """
    if not names:
        return None
    tokenized = [set(re.split(r"[^a-z0-9]+", name.lower())) for name in names]
    for hint in hints:
        needle = hint.lower()
        for index, tokens in enumerate(tokenized):
            if needle in tokens:
                return index
    return 0


def decode_wav_data_uri(uri: str) -> RenderedSpeech:
    """Decode a ``data:audio/wav;base64,...`` URI into PCM16."""
    try:
        _mime, payload = split_data_uri(uri)
        raw = base64.b64decode(payload)
        with wave.open(io.BytesIO(raw), "rb") as reader:
            if reader.getsampwidth() != 2:
                raise PlaybackError(f"unsupported sample width {reader.getsampwidth()}")
            return RenderedSpeech(
                pcm=reader.readframes(reader.getnframes()),
                sample_rate=reader.getframerate(),
                channels=reader.getnchannels(),
            )
    except (ValueError, wave.Error, EOFError) as exc:
        raise PlaybackError(f"invalid audio payload: {exc}") from exc


class LocalSpeechEngine:
    """On-device synthesis with installed Piper voices."""

    name = "local"

    def __init__(
        self,
        voices_dir: Path,
        *,
        female_hints: Sequence[str],
        male_hints: Sequence[str],
        length_scale: float = 1.0,
    ) -> None:
        self.voices_dir = Path(voices_dir)
        self.female_hints = list(female_hints)
        self.male_hints = list(male_hints)
        self.length_scale = length_scale
        self._voices: dict[Path, object] = {}
        self._lock = threading.Lock()

    def available_voices(self) -> list[Path]:
        if not self.voices_dir.exists():
            return []
        return sorted(self.voices_dir.rglob("*.onnx"))

    def voice_for(self, voice: VoicePreference) -> Path:
        voices = self.available_voices()
        hints = self.male_hints if voice is VoicePreference.MALE else self.female_hints
        index = select_voice([path.stem for path in voices], hints)
        if index is None:
            raise SpeechUnavailableError(f"no Piper voice installed under {self.voices_dir}")
        return voices[index]

    async def render(self, text: str, voice: VoicePreference) -> RenderedSpeech:
        model_path = self.voice_for(voice)
        loop = asyncio.get_running_loop()
        tts = await loop.run_in_executor(None, self._load, model_path)
        pcm, rate, channels = await loop.run_in_executor(None, tts.synthesize, text)
        return RenderedSpeech(pcm=pcm, sample_rate=rate, channels=channels)

    def _load(self, model_path: Path):
        from athena.audio.tts import PiperTTS

        with self._lock:
            cached = self._voices.get(model_path)
            if cached is None:
                cached = PiperTTS(model_path, length_scale=self.length_scale)
                self._voices[model_path] = cached
            return cached


class ServerSpeechEngine:
    """Higher-fidelity audio generated by the hosted TTS model."""

    name = "server"

    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def render(self, text: str, voice: VoicePreference) -> RenderedSpeech:
        uri = await self.client.text_to_speech(text, voice)
        if uri is None:
            raise PlaybackError("the speech service returned no audio")
        return decode_wav_data_uri(uri)


def build_engine(settings: Settings, client: GeminiClient | None = None) -> SpeechEngine:
    if settings.tts_strategy == "server":
        return ServerSpeechEngine(client or GeminiClient(settings))
    if settings.tts_strategy != "local":
        LOGGER.warning("Unknown tts_strategy %r, using local voices", settings.tts_strategy)
    return LocalSpeechEngine(
        Path(settings.piper_voices_dir),
        female_hints=settings.female_voice_hints,
        male_hints=settings.male_voice_hints,
        length_scale=settings.piper_length_scale,
    )


def build_audio_output(settings: Settings) -> AudioOutput | None:
    """Open the speaker, or None when no audio backend is usable."""
    try:
        from athena.audio.playback import PlaybackConfig, SpeechPlayback
    except (ImportError, OSError) as exc:
        LOGGER.warning("Audio playback unavailable: %s", exc)
        return None
    return SpeechPlayback(PlaybackConfig(sample_rate=settings.tts_sample_rate, device_name=settings.playback_device))


def build_output_channel(settings: Settings, client: GeminiClient | None = None) -> SpeechOutputChannel:
    return SpeechOutputChannel(build_engine(settings, client), build_audio_output(settings))
