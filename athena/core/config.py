"""Unified application configuration."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PERSONA = (
    "You are Athena, a helpful and friendly multilingual assistant.\n"
    "Your responses should be detailed, informative, and conversational.\n"
    "IMPORTANT: detect the language of the user's prompt and ALWAYS respond in that same language.\n"
    "If the user asks a question that can be answered with a simple \"yes\" or \"no\", "
    "answer with \"yes\" or \"no\" in their language.\n"
    "If a user provides a large piece of text and asks for a summary, provide a concise summary.\n"
    "If a user's conversation indicates interest in a topic, you can suggest relevant articles or videos."
)


class Settings(BaseSettings):
    """Global application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ATHENA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # Storage
    data_dir: str = "data"
    store_file: str = "athena_store.json"
    export_dir: str = "exports"

    # Logs
    log_dir: str = "logs"
    log_rotate_mb: int = 5
    log_retention_days: int = 7

    # Gemini
    google_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"
    gemini_tts_model: str = "gemini-2.5-flash-preview-tts"
    gemini_timeout_sec: float = 60.0
    generation_temperature: float = 0.8
    history_window: int = 5
    system_prompt: str = DEFAULT_PERSONA

    # Conversation controller
    reply_timeout_sec: float = 60.0
    reply_retries: int = 1
    analyze_documents: bool = False
    title_max_chars: int = 40

    # Speech synthesis
    tts_strategy: str = "local"
    tts_voice_female: str = "Kore"
    tts_voice_male: str = "Algenib"
    tts_sample_rate: int = 24_000
    piper_voices_dir: str = "models/tts"
    piper_length_scale: float = 1.0
    female_voice_hints: list[str] = ["female", "woman", "amy", "lessac", "kristin", "jenny", "siwis", "zira", "samantha"]
    male_voice_hints: list[str] = ["male", "man", "ryan", "joe", "alan", "john", "gilles", "david", "daniel"]
    playback_device: str | None = None

    # Speech recognition
    asr_model: str = "base.en"
    asr_device: str = "cpu"
    asr_compute_type: str = "int8"
    asr_language: str = "en"
    capture_sample_rate: int = 16_000
    capture_device: str | None = None
    asr_max_utterance_sec: float = 30.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load config.json from the working directory when present."""
        config_path = Path.cwd() / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text(encoding="utf-8"))
            except ValueError:
                return {}
        return {}

    @property
    def store_path(self) -> Path:
        return Path(self.data_dir) / self.store_file


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
