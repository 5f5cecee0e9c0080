"""Conversation controller: send, regenerate, clear and export chats."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from athena.core.config import Settings, get_settings
from athena.core.errors import GenerationError, Notifier, log_notifier, notification
from athena.core.logger import get_logger
from athena.core.models import Attachment, Chat, Message, Role, VoicePreference
from athena.core.session import ChatSession
from athena.core.trace import new_trace_id
from athena.core.transcript import DownloadSink, export_filename, format_transcript


log = get_logger("chat")

CommitGuard = Callable[[], bool]
Speaker = Callable[[str], None]


class ReplyGenerator(Protocol):
    """Hosted model producing the assistant reply."""

    async def generate_reply(
        self,
        history: Sequence[Message],
        message: str,
        images: Sequence[Attachment],
    ) -> str: ...


class Analyzer(Protocol):
    """Optional document analysis folded into the outgoing message."""

    async def analyze(self, text: str, query: str | None = None): ...

    async def suggest_resources(self, conversation: str) -> list[str]: ...


SEND_FAILED = notification(
    "Error",
    "Failed to get a response from the assistant. Please check your connection and try again.",
    error=True,
)
BUSY = notification("Please wait", "The assistant is still answering in this chat.", error=True)


class ConversationController:
    """Coordinates the chat session with the reply generator.

    At most one send or regenerate runs per chat. Overlapping calls against a
    busy chat are rejected rather than queued, so truncation and appends never
    interleave.
    """

    def __init__(
        self,
        session: ChatSession,
        generator: ReplyGenerator,
        *,
        notify: Optional[Notifier] = None,
        sink: Optional[DownloadSink] = None,
        analyzer: Optional[Analyzer] = None,
        speaker: Optional[Speaker] = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.generator = generator
        self.notify: Notifier = notify or log_notifier(log)
        self.sink = sink
        self.analyzer = analyzer
        self.speaker = speaker
        self.settings = settings or get_settings()
        self.voice_chat_mode = False
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------ #
    # Chat collection
    # ------------------------------------------------------------------ #
    @property
    def messages(self) -> list[Message]:
        """Messages of the active chat; empty when the pointer is dangling."""
        return self.session.active_messages()

    @property
    def active_chat_id(self) -> str | None:
        return self.session.active_chat_id

    def list_chats(self) -> list[Chat]:
        return self.session.chats

    def create_new_chat(self) -> str:
        chat = self.session.create_chat()
        log.info("chat created %s", chat.id)
        return chat.id

    def set_active_chat(self, chat_id: str | None) -> None:
        self.session.set_active(chat_id)

    def delete_chat(self, chat_id: str) -> bool:
        deleted = self.session.delete_chat(chat_id)
        if deleted:
            log.info("chat deleted %s", chat_id)
        return deleted

    def is_busy(self, chat_id: str | None = None) -> bool:
        if chat_id is None:
            return bool(self._in_flight)
        return chat_id in self._in_flight

    def set_voice(self, voice: VoicePreference) -> None:
        self.session.voice = voice

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #
    async def send_message(
        self,
        content: str,
        attachments: Sequence[Attachment] = (),
        *,
        speak: bool = True,
        should_commit: CommitGuard | None = None,
    ) -> Message | None:
        """Append a user message and the assistant's reply.

        Returns the assistant message, or None when nothing was appended
        (blank input, busy chat, collaborator failure or discarded reply).
        """
        attachments = tuple(attachments)
        if not content.strip() and not attachments:
            return None
        chat = self._resolve_chat()
        if chat is None:
            return None
        if self._reject_if_busy(chat):
            return None

        new_trace_id()
        prior = list(chat.messages)
        user_message = Message.create(
            Role.USER,
            content,
            attachments=attachments,
            not_before=chat.last_timestamp,
        )
        pending = prior + [user_message]
        self.session.set_messages(chat.id, pending)
        log.info("send chat=%s attachments=%d", chat.id, len(attachments))
        return await self._exchange(chat.id, prior, pending, user_message, speak=speak, should_commit=should_commit)

    async def regenerate_response(
        self,
        *,
        speak: bool = True,
        should_commit: CommitGuard | None = None,
    ) -> Message | None:
        """Replace everything after the latest user message with a new reply."""
        chat = self._resolve_chat()
        if chat is None:
            return None
        index = chat.last_user_index()
        if index is None:
            return None
        if self._reject_if_busy(chat):
            return None

        new_trace_id()
        prior = list(chat.messages)
        truncated = prior[: index + 1]
        self.session.set_messages(chat.id, truncated)
        log.info("regenerate chat=%s dropped=%d", chat.id, len(prior) - len(truncated))
        return await self._exchange(chat.id, prior, truncated, truncated[-1], speak=speak, should_commit=should_commit)

    def clear_chat(self) -> None:
        chat = self._resolve_chat()
        if chat is None:
            return
        if self._reject_if_busy(chat):
            return
        self.session.set_messages(chat.id, [])
        log.info("chat cleared %s", chat.id)
        self.notify(notification("Chat Cleared", "Your conversation history has been cleared."))

    def export_chat(self) -> Path | None:
        """Hand the active chat's transcript to the download sink."""
        messages = self.messages
        if not messages:
            self.notify(notification("Export Failed", "There are no messages to export.", error=True))
            return None
        if self.sink is None:
            self.notify(notification("Export Failed", "No export destination is configured.", error=True))
            return None
        try:
            path = self.sink.save(format_transcript(messages), export_filename())
        except OSError as exc:
            log.warning("chat export failed: %s", exc)
            self.notify(notification("Export Failed", "Could not save the conversation.", error=True))
            return None
        log.info("chat exported to %s", path)
        self.notify(notification("Chat Exported", "Your conversation has been saved as a text file."))
        return path

    async def suggest_resources(self) -> list[str]:
        messages = self.messages
        if not messages or self.analyzer is None:
            return []
        conversation = "\n".join(f"{item.role.value}: {item.content}" for item in messages)
        try:
            return await self.analyzer.suggest_resources(conversation)
        except Exception as exc:
            log.warning("resource suggestion failed: %s", exc)
            self.notify(notification("Error", "Could not suggest resources right now.", error=True))
            return []

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _resolve_chat(self) -> Chat | None:
        chat = self.session.current_chat()
        if chat is None and self.session.chats:
            chat = self.session.active_chat()
        return chat

    def _reject_if_busy(self, chat: Chat) -> bool:
        if chat.id in self._in_flight:
            log.warning("rejected overlapping operation on chat %s", chat.id)
            self.notify(BUSY)
            return True
        return False

    async def _exchange(
        self,
        chat_id: str,
        prior: list[Message],
        history: list[Message],
        prompt: Message,
        *,
        speak: bool,
        should_commit: CommitGuard | None,
    ) -> Message | None:
        self._in_flight.add(chat_id)
        try:
            start = time.perf_counter()
            try:
                outgoing = await self._compose(prompt.content, prompt.attachments)
                reply = await self._request_reply(history, outgoing, prompt.images)
            except asyncio.CancelledError:
                self._rollback(chat_id, prior)
                raise
            except Exception as exc:
                log.error("reply failed for chat %s: %r", chat_id, exc)
                self._rollback(chat_id, prior)
                self.notify(SEND_FAILED)
                return None

            if self.session.get_chat(chat_id) is None:
                log.info("reply discarded: chat %s no longer exists", chat_id)
                return None
            if should_commit is not None and not should_commit():
                log.info("reply discarded for chat %s", chat_id)
                self._rollback(chat_id, prior)
                return None

            assistant = Message.create(Role.ASSISTANT, reply, not_before=history[-1].timestamp)
            self.session.set_messages(chat_id, history + [assistant])
            log.info("reply stored chat=%s latency_ms=%.1f", chat_id, (time.perf_counter() - start) * 1000)
        finally:
            self._in_flight.discard(chat_id)

        if speak and self.voice_chat_mode and self.speaker is not None:
            try:
                self.speaker(reply)
            except Exception as exc:
                log.warning("speech playback could not start: %r", exc)
        return assistant

    async def _request_reply(self, history: list[Message], text: str, images: list[Attachment]) -> str:
        attempts = max(0, int(self.settings.reply_retries)) + 1
        timeout = float(self.settings.reply_timeout_sec)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self.generator.generate_reply(history, text, images),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                last_error = exc
                log.warning("reply attempt %d/%d timed out after %.0fs", attempt, attempts, timeout)
            except GenerationError as exc:
                last_error = exc
                log.warning("reply attempt %d/%d failed: %s", attempt, attempts, exc)
            except Exception as exc:
                last_error = exc
                log.warning("reply attempt %d/%d raised %r", attempt, attempts, exc)
        raise GenerationError("no reply after retries") from last_error

    async def _compose(self, content: str, attachments: Sequence[Attachment]) -> str:
        """Fold document attachments into the outgoing text."""
        documents = [item for item in attachments if not item.is_image]
        if not documents:
            return content
        blocks: list[str] = []
        for document in documents:
            body = document.content
            if self.analyzer is not None and self.settings.analyze_documents:
                try:
                    analysis = await self.analyzer.analyze(document.content, query=content.strip() or None)
                    body = analysis.to_context()
                except Exception as exc:
                    log.warning("analysis of %s failed, sending raw text: %s", document.name, exc)
            blocks.append(f"--- Document: {document.name} ---\n{body}")
        return (
            f"{content}\n\nThe user has provided the following documents for context:\n"
            + "\n\n".join(blocks)
        )

    def _rollback(self, chat_id: str, prior: list[Message]) -> None:
        if self.session.get_chat(chat_id) is not None:
            self.session.set_messages(chat_id, prior)

