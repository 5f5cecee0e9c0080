"""Chat collection owned by a single session object."""

from __future__ import annotations

import logging
from typing import Iterable

from athena.core.models import Chat, Message, VoicePreference
from athena.core.store import KeyValueStore


CHATS_KEY = "athena-ai-chats"
ACTIVE_KEY = "athena-ai-active-chat"
VOICE_KEY = "athena-ai-voice"

LOGGER = logging.getLogger(__name__)


class ChatSession:
    """Owns every chat and the active-chat pointer.

    Chats are referenced by id everywhere else. The active id is a weak
    reference: it is re-resolved against the collection on every read.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._chats: list[Chat] = []
        self._active_id: str | None = None
        self._voice = VoicePreference.FEMALE
        self._loaded = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def load(self) -> "ChatSession":
        """Load the collection; create one empty chat when nothing is stored."""
        raw_chats = self.store.load(CHATS_KEY, [])
        chats: list[Chat] = []
        seen: set[str] = set()
        if isinstance(raw_chats, list):
            for payload in raw_chats:
                try:
                    chat = Chat.from_payload(payload)
                except (KeyError, TypeError, ValueError) as exc:
                    LOGGER.warning("Skipping unreadable chat record: %s", exc)
                    continue
                if chat.id in seen:
                    LOGGER.warning("Skipping duplicate chat id %s", chat.id)
                    continue
                seen.add(chat.id)
                chats.append(chat)
        self._chats = chats

        active = self.store.load(ACTIVE_KEY, None)
        self._active_id = active if isinstance(active, str) else None
        self._voice = VoicePreference.parse(self.store.load(VOICE_KEY, None))
        self._loaded = True

        if not self._chats:
            self.create_chat()
        elif self.get_chat(self._active_id) is None:
            self._active_id = self._chats[0].id
            self.store.save(ACTIVE_KEY, self._active_id)
        return self

    def persist(self) -> None:
        self.store.save(CHATS_KEY, [chat.to_payload() for chat in self._chats])
        self.store.save(ACTIVE_KEY, self._active_id)

    # ------------------------------------------------------------------ #
    # Collection
    # ------------------------------------------------------------------ #
    @property
    def chats(self) -> list[Chat]:
        return list(self._chats)

    @property
    def active_chat_id(self) -> str | None:
        return self._active_id

    def get_chat(self, chat_id: str | None) -> Chat | None:
        if chat_id is None:
            return None
        for chat in self._chats:
            if chat.id == chat_id:
                return chat
        return None

    def create_chat(self) -> Chat:
        chat = Chat.create()
        while self.get_chat(chat.id) is not None:
            chat = Chat.create()
        self._chats.insert(0, chat)
        self._active_id = chat.id
        self.persist()
        return chat

    def set_active(self, chat_id: str | None) -> None:
        """Move the active pointer. Unknown ids are accepted and read as None."""
        self._active_id = chat_id
        self.store.save(ACTIVE_KEY, chat_id)

    def delete_chat(self, chat_id: str) -> bool:
        chat = self.get_chat(chat_id)
        if chat is None:
            return False
        self._chats.remove(chat)
        if self._active_id == chat_id:
            self._active_id = self._chats[0].id if self._chats else None
        if not self._chats:
            self.create_chat()
        else:
            self.persist()
        return True

    def current_chat(self) -> Chat | None:
        """Active chat, or None when the pointer does not resolve."""
        return self.get_chat(self._active_id)

    def active_chat(self) -> Chat:
        """Active chat, falling back to the first chat or a new one."""
        chat = self.current_chat()
        if chat is not None:
            return chat
        if self._chats:
            self.set_active(self._chats[0].id)
            return self._chats[0]
        return self.create_chat()

    def active_messages(self) -> list[Message]:
        chat = self.current_chat()
        return list(chat.messages) if chat is not None else []

    def set_messages(self, chat_id: str, messages: Iterable[Message]) -> None:
        """Replace a chat's message slice and persist."""
        chat = self.get_chat(chat_id)
        if chat is None:
            raise KeyError(chat_id)
        chat.messages = list(messages)
        self.persist()

    # ------------------------------------------------------------------ #
    # Preferences
    # ------------------------------------------------------------------ #
    @property
    def voice(self) -> VoicePreference:
        return self._voice

    @voice.setter
    def voice(self, value: VoicePreference) -> None:
        self._voice = value
        self.store.save(VOICE_KEY, value.value)
