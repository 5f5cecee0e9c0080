from __future__ import annotations

from datetime import datetime
from pathlib import Path

from athena.core.models import Attachment, AttachmentKind, Chat, Message, Role
from athena.core.transcript import SEPARATOR, DirectorySink, export_filename, format_transcript


def test_export_filename_uses_date() -> None:
    assert export_filename(datetime(2024, 3, 9, 12, 0)) == "athena-ai-chat-2024-03-09.txt"


def test_format_transcript_blocks() -> None:
    stamp = int(datetime(2024, 3, 9, 8, 30, 5).timestamp() * 1000)
    doc = Attachment(name="notes.txt", kind=AttachmentKind.DOCUMENT, content="x")
    messages = [
        Message(id="u1", role=Role.USER, content="Hello", timestamp=stamp, attachments=(doc,)),
        Message(id="a1", role=Role.ASSISTANT, content="Hi there", timestamp=stamp),
    ]
    text = format_transcript(messages)
    first, second = text.split(SEPARATOR)
    assert first == "[2024-03-09 08:30:05] USER:\nHello\nAttachments: notes.txt"
    assert second == "[2024-03-09 08:30:05] ASSISTANT:\nHi there"


def test_directory_sink_never_overwrites(tmp_path: Path) -> None:
    sink = DirectorySink(tmp_path / "out")
    first = sink.save("one", "chat.txt")
    second = sink.save("two", "chat.txt")
    assert first.name == "chat.txt" and second.name == "chat-1.txt"
    assert first.read_text(encoding="utf-8") == "one"


def test_chat_display_title_and_payload() -> None:
    chat = Chat(id="c1", created_at=5)
    assert chat.display_title() == "New Chat"
    chat.messages.append(Message(id="u1", role=Role.USER, content="  a   very long question about things ", timestamp=1))
    assert chat.display_title(12) == "a very lo..."
    restored = Chat.from_payload(chat.to_payload())
    assert restored == chat
    assert chat.to_payload()["createdAt"] == 5
