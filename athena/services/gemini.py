"""HTTP client for the hosted Gemini models."""

from __future__ import annotations

import base64
import io
import logging
import wave
from typing import Any, Sequence

import httpx

from athena.core.config import Settings, get_settings
from athena.core.errors import GenerationError
from athena.core.models import Attachment, Message, VoicePreference


logger = logging.getLogger(__name__)


def split_data_uri(uri: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a ``data:`` URI."""
    if not uri.startswith("data:") or "," not in uri:
        raise ValueError("not a base64 data URI")
    header, payload = uri[5:].split(",", 1)
    mime = header.split(";", 1)[0] or "application/octet-stream"
    return mime, payload


def pcm_to_wav(pcm: bytes, *, sample_rate: int = 24_000, channels: int = 1, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as writer:
        writer.setnchannels(channels)
        writer.setsampwidth(sample_width)
        writer.setframerate(sample_rate)
        writer.writeframes(pcm)
    return buffer.getvalue()


def build_prompt(history: Sequence[Message], message: str, *, persona: str, window: int) -> str:
    recent = list(history)[-window:] if window > 0 else []
    lines = "\n".join(f"{item.role.value}: {item.content}" for item in recent) or "No history yet."
    return (
        f"{persona}\n\n"
        "Here is the current conversation history:\n"
        f"{lines}\n\n"
        "Here is the user's latest message:\n"
        f"user: {message}"
    )


def _extract_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))


def _extract_audio(data: dict[str, Any]) -> str | None:
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    for part in (candidates[0].get("content") or {}).get("parts") or []:
        inline = part.get("inlineData") or part.get("inline_data") or {}
        if inline.get("data"):
            return str(inline["data"])
    return None


class GeminiClient:
    """Thin async wrapper around the Gemini ``generateContent`` endpoint."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.base_url = self.settings.gemini_base_url.rstrip("/")
        self.model = self.settings.gemini_model
        self.tts_model = self.settings.gemini_tts_model
        self.timeout = float(self.settings.gemini_timeout_sec)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def generate_reply(
        self,
        history: Sequence[Message],
        message: str,
        images: Sequence[Attachment] = (),
    ) -> str:
        """Answer ``message`` given the conversation so far."""
        prompt = build_prompt(
            history,
            message,
            persona=self.settings.system_prompt,
            window=self.settings.history_window,
        )
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for image in images:
            try:
                mime, payload = split_data_uri(image.content)
            except ValueError:
                logger.warning("Skipping image %s: content is not a data URI", image.name)
                continue
            parts.append({"inline_data": {"mime_type": mime, "data": payload}})
        data = await self._generate(
            self.model,
            {
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"temperature": self.settings.generation_temperature},
            },
        )
        text = _extract_text(data).strip()
        if not text:
            raise GenerationError("Gemini returned an empty reply")
        return text

    async def generate_json(self, prompt: str, *, temperature: float = 0.2) -> str:
        """Run a prompt that must answer with a JSON document."""
        data = await self._generate(
            self.model,
            {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": temperature,
                    "responseMimeType": "application/json",
                },
            },
        )
        return _extract_text(data)

    async def text_to_speech(self, text: str, voice: VoicePreference = VoicePreference.FEMALE) -> str | None:
        """Return a ``data:audio/wav`` URI for ``text``, or None on failure."""
        if not text.strip():
            logger.info("TTS request ignored: empty text")
            return None
        voice_name = self.settings.tts_voice_male if voice is VoicePreference.MALE else self.settings.tts_voice_female
        try:
            data = await self._generate(
                self.tts_model,
                {
                    "contents": [{"parts": [{"text": text}]}],
                    "generationConfig": {
                        "responseModalities": ["AUDIO"],
                        "speechConfig": {
                            "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_name}},
                        },
                    },
                },
            )
        except GenerationError as exc:
            logger.warning("TTS generation failed: %s", exc)
            return None
        audio = _extract_audio(data)
        if not audio:
            logger.warning("TTS response did not contain audio")
            return None
        try:
            pcm = base64.b64decode(audio)
        except ValueError as exc:
            logger.warning("TTS audio payload is not base64: %s", exc)
            return None
        wav_bytes = pcm_to_wav(pcm, sample_rate=self.settings.tts_sample_rate)
        return "data:audio/wav;base64," + base64.b64encode(wav_bytes).decode("ascii")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _generate(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        api_key = self.settings.google_api_key
        if not api_key:
            raise GenerationError("google_api_key is not configured (set ATHENA_GOOGLE_API_KEY)")
        url = f"{self.base_url}/models/{model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        timeout = httpx.Timeout(self.timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            try:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                detail = exc.response.text.strip()[:200] or exc.response.reason_phrase
                raise GenerationError(
                    f"Gemini answered {exc.response.status_code}: {detail}"
                ) from exc
            except httpx.RequestError as exc:
                raise GenerationError(f"Could not reach Gemini at {self.base_url}: {exc}") from exc
            try:
                data = resp.json()
            except ValueError as exc:
                raise GenerationError("Gemini returned a non-JSON response") from exc
        if not isinstance(data, dict):
            raise GenerationError("Gemini returned an unexpected payload")
        return data
