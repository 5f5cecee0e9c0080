"""Chat entities exchanged between the session, the controller and the store."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


DEFAULT_TITLE = "New Chat"


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class AttachmentKind(str, Enum):
    """Payload type of an attachment."""

    IMAGE = "image"
    DOCUMENT = "document"


class VoicePreference(str, Enum):
    """Voice gender used by speech playback."""

    FEMALE = "female"
    MALE = "male"

    @classmethod
    def parse(cls, raw: Any, default: "VoicePreference | None" = None) -> "VoicePreference":
        try:
            return cls(str(raw).lower())
        except ValueError:
            return default or cls.FEMALE


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class Attachment:
    """Image (data URI) or document (decoded text) attached to a message."""

    name: str
    kind: AttachmentKind
    content: str

    @property
    def is_image(self) -> bool:
        return self.kind is AttachmentKind.IMAGE

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind.value, "content": self.content}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Attachment":
        return cls(
            name=str(payload["name"]),
            kind=AttachmentKind(payload.get("type") or payload.get("kind")),
            content=str(payload.get("content") or ""),
        )


@dataclass(frozen=True, slots=True)
class Message:
    """Single chat message. Never mutated once created."""

    id: str
    role: Role
    content: str
    timestamp: int
    attachments: tuple[Attachment, ...] = ()

    @classmethod
    def create(
        cls,
        role: Role,
        content: str,
        *,
        attachments: tuple[Attachment, ...] = (),
        not_before: int = 0,
    ) -> "Message":
        """Build a message stamped no earlier than ``not_before``."""
        return cls(
            id=new_id(role.value),
            role=role,
            content=content,
            timestamp=max(now_ms(), not_before),
            attachments=tuple(attachments),
        )

    @property
    def images(self) -> list[Attachment]:
        return [item for item in self.attachments if item.is_image]

    @property
    def documents(self) -> list[Attachment]:
        return [item for item in self.attachments if not item.is_image]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.attachments:
            payload["attachments"] = [item.to_payload() for item in self.attachments]
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Message":
        return cls(
            id=str(payload["id"]),
            role=Role(payload["role"]),
            content=str(payload.get("content") or ""),
            timestamp=int(payload.get("timestamp") or 0),
            attachments=tuple(Attachment.from_payload(item) for item in payload.get("attachments") or []),
        )


@dataclass(slots=True)
class Chat:
    """Conversation thread. Messages are append-only outside clear/regenerate."""

    id: str
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def create(cls) -> "Chat":
        return cls(id=new_id("chat"))

    @property
    def last_timestamp(self) -> int:
        return self.messages[-1].timestamp if self.messages else 0

    def display_title(self, max_chars: int = 40) -> str:
        """First user message (truncated) when present, stored title otherwise."""
        for message in self.messages:
            if message.role is Role.USER and message.content.strip():
                text = " ".join(message.content.split())
                if len(text) > max_chars:
                    return text[: max_chars - 3].rstrip() + "..."
                return text
        return self.title

    def last_user_index(self) -> int | None:
        for index in range(len(self.messages) - 1, -1, -1):
            if self.messages[index].role is Role.USER:
                return index
        return None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message.to_payload() for message in self.messages],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Chat":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or DEFAULT_TITLE),
            messages=[Message.from_payload(item) for item in payload.get("messages") or []],
            created_at=int(payload.get("createdAt") or payload.get("created_at") or 0),
        )
