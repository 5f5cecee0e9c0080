"""Plain-text chat transcripts and the sink that saves them."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Protocol, Sequence

from athena.core.models import Message


SEPARATOR = "\n\n---------------------------------\n\n"


class DownloadSink(Protocol):
    """Receives an exported transcript."""

    def save(self, text: str, filename: str) -> Path: ...


class DirectorySink:
    """Write exports into a directory, never overwriting an earlier file."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def save(self, text: str, filename: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / filename
        counter = 1
        while target.exists():
            target = self.directory / f"{Path(filename).stem}-{counter}{Path(filename).suffix}"
            counter += 1
        target.write_text(text, encoding="utf-8")
        return target


def export_filename(today: datetime | None = None) -> str:
    day = (today or datetime.now()).strftime("%Y-%m-%d")
    return f"athena-ai-chat-{day}.txt"


def format_transcript(messages: Sequence[Message]) -> str:
    blocks: list[str] = []
    for message in messages:
        stamp = datetime.fromtimestamp(message.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        block = f"[{stamp}] {message.role.value.upper()}:\n{message.content}"
        if message.attachments:
            names = ", ".join(item.name for item in message.attachments)
            block += f"\nAttachments: {names}"
        blocks.append(block)
    return SEPARATOR.join(blocks)
