from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal


Variant = Literal["default", "destructive"]


class AthenaError(Exception):
    """Base class for errors raised by Athena collaborators."""


class GenerationError(AthenaError):
    """The hosted model could not produce a reply."""


class SpeechUnavailableError(AthenaError):
    """Speech recognition or synthesis is not available in this environment."""


class RecognitionError(AthenaError):
    """Speech recognition failed at runtime."""

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(message or kind)
        self.kind = kind

    @property
    def is_network(self) -> bool:
        return self.kind == "network"


class PlaybackError(AthenaError):
    """Audio playback failed at runtime."""


@dataclass(frozen=True, slots=True)
class Notification:
    """User-visible transient message (the terminal equivalent of a toast)."""

    title: str
    description: str
    variant: Variant = "default"

    @property
    def is_error(self) -> bool:
        return self.variant == "destructive"


Notifier = Callable[[Notification], None]


def notification(title: str, description: str, *, error: bool = False) -> Notification:
    return Notification(title=title, description=description, variant="destructive" if error else "default")


def log_notifier(logger: logging.Logger) -> Notifier:
    """Notifier that only writes to the given logger."""

    def _notify(note: Notification) -> None:
        level = logging.WARNING if note.is_error else logging.INFO
        logger.log(level, "%s: %s", note.title, note.description)

    return _notify
