"""Voice interaction state machine: idle, listening, thinking, speaking."""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Callable, Optional

from athena.core.controller import ConversationController
from athena.core.errors import (
    Notifier,
    PlaybackError,
    RecognitionError,
    SpeechUnavailableError,
    notification,
)
from athena.core.logger import get_logger
from athena.core.trace import new_trace_id
from athena.voice.output import SpeakOptions, SpeechOutputChannel
from athena.voice.recognition import Recognizer, TranscriptEvent


log = get_logger("voice")


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class VoiceEvent(str, Enum):
    ACTIVATE = "activate"
    FINAL_TRANSCRIPT = "final_transcript"
    RECOGNITION_ENDED = "recognition_ended"
    RECOGNITION_ERROR = "recognition_error"
    REPLY_READY = "reply_ready"
    REPLY_FAILED = "reply_failed"
    SPEAK = "speak"
    PLAYBACK_ENDED = "playback_ended"
    PLAYBACK_ERROR = "playback_error"
    CANCEL = "cancel"


TRANSITIONS: dict[tuple[VoiceState, VoiceEvent], VoiceState] = {
    (VoiceState.IDLE, VoiceEvent.ACTIVATE): VoiceState.LISTENING,
    (VoiceState.SPEAKING, VoiceEvent.ACTIVATE): VoiceState.LISTENING,
    (VoiceState.LISTENING, VoiceEvent.FINAL_TRANSCRIPT): VoiceState.THINKING,
    (VoiceState.LISTENING, VoiceEvent.RECOGNITION_ENDED): VoiceState.IDLE,
    (VoiceState.LISTENING, VoiceEvent.RECOGNITION_ERROR): VoiceState.IDLE,
    (VoiceState.THINKING, VoiceEvent.REPLY_READY): VoiceState.SPEAKING,
    (VoiceState.THINKING, VoiceEvent.REPLY_FAILED): VoiceState.IDLE,
    (VoiceState.SPEAKING, VoiceEvent.PLAYBACK_ENDED): VoiceState.IDLE,
    (VoiceState.SPEAKING, VoiceEvent.PLAYBACK_ERROR): VoiceState.IDLE,
    (VoiceState.IDLE, VoiceEvent.SPEAK): VoiceState.SPEAKING,
    (VoiceState.SPEAKING, VoiceEvent.SPEAK): VoiceState.SPEAKING,
}


def next_state(state: VoiceState, event: VoiceEvent) -> VoiceState | None:
    """Target state for ``event``, or None when the event does not apply."""
    if event is VoiceEvent.CANCEL:
        return VoiceState.IDLE
    return TRANSITIONS.get((state, event))


StateListener = Callable[[VoiceState, VoiceState], None]
TranscriptListener = Callable[[TranscriptEvent], None]

RECOGNITION_UNSUPPORTED = notification(
    "Unsupported", "Speech recognition is not supported in this environment.", error=True
)
SYNTHESIS_UNSUPPORTED = notification(
    "Speech Error", "Speech synthesis is not supported in this environment.", error=True
)
RECOGNITION_NETWORK = notification(
    "Network Error",
    "Speech recognition service is unavailable. Please check your internet connection.",
    error=True,
)
RECOGNITION_FAILED = notification("Voice Error", "Speech recognition failed. Please try again.", error=True)
PLAYBACK_FAILED = notification("Speech Error", "Could not play the audio. Please try again.", error=True)

_SILENT_RECOGNITION_ERRORS = {"no-speech", "aborted"}


class _SessionListener:
    """Routes recognizer callbacks for one session; stale sessions are ignored."""

    def __init__(self, machine: "VoiceStateMachine", session_id: int) -> None:
        self.machine = machine
        self.session_id = session_id

    def _current(self) -> bool:
        return self.machine._session == self.session_id

    def on_transcript(self, event: TranscriptEvent) -> None:
        if self._current():
            self.machine._handle_transcript(event)

    def on_error(self, error: RecognitionError) -> None:
        if self._current():
            self.machine._handle_recognition_error(error)

    def on_end(self) -> None:
        if self._current():
            self.machine._fire(VoiceEvent.RECOGNITION_ENDED)


class VoiceStateMachine:
    """Drives a voice exchange on top of the conversation controller.

    ``cancel()`` returns to idle synchronously. A reply that is still being
    generated is not interrupted; it is discarded when it arrives.
    """

    def __init__(
        self,
        controller: ConversationController,
        recognizer: Recognizer | None,
        output: SpeechOutputChannel | None,
        *,
        notify: Optional[Notifier] = None,
    ) -> None:
        self.controller = controller
        self.recognizer = recognizer
        self.output = output
        self.notify: Notifier = notify or controller.notify
        self._state = VoiceState.IDLE
        self._subscribers: list[StateListener] = []
        self._transcript_listeners: list[TranscriptListener] = []
        self._epoch = 0
        self._session = 0
        self._utterance = 0
        self._tasks: set[asyncio.Task] = set()
        self._warned: set[str] = set()

    @property
    def state(self) -> VoiceState:
        return self._state

    def subscribe(self, callback: StateListener) -> Callable[[], None]:
        """Register ``callback(old, new)``; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    def add_transcript_listener(self, callback: TranscriptListener) -> Callable[[], None]:
        self._transcript_listeners.append(callback)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._transcript_listeners.remove(callback)

        return _remove

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    def toggle_listening(self) -> None:
        """Microphone button: start, stop or barge in depending on the state."""
        if self._state is VoiceState.LISTENING:
            if self.recognizer is not None:
                self.recognizer.stop()
            return
        if self._state is VoiceState.THINKING:
            log.info("toggle ignored while thinking")
            return
        if self._state is VoiceState.SPEAKING:
            self._silence()
            if not self._start_listening():
                self._fire(VoiceEvent.PLAYBACK_ENDED)
            return
        self._start_listening()

    def speak(self, text: str) -> None:
        """Speak ``text`` now, replacing any utterance in progress."""
        if self._state not in (VoiceState.IDLE, VoiceState.SPEAKING):
            log.info("speak ignored in state %s", self._state.value)
            return
        if not self._speech_supported():
            return
        self._fire(VoiceEvent.SPEAK)
        self._play(text)

    def cancel(self) -> None:
        """Abort listening and speaking and return to idle."""
        self._epoch += 1
        self._session += 1
        self._utterance += 1
        if self.recognizer is not None:
            self.recognizer.abort()
        if self.output is not None:
            self.output.cancel()
        self._fire(VoiceEvent.CANCEL)

    def close(self) -> None:
        self.cancel()
        self._subscribers.clear()
        self._transcript_listeners.clear()

    async def drain(self) -> None:
        """Wait for pending replies and playback to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self.output is not None:
            await self.output.wait()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _fire(self, event: VoiceEvent) -> bool:
        target = next_state(self._state, event)
        if target is None:
            log.debug("event %s ignored in state %s", event.value, self._state.value)
            return False
        previous = self._state
        self._state = target
        if previous is not target:
            log.info("voice %s -> %s (%s)", previous.value, target.value, event.value)
            for callback in list(self._subscribers):
                try:
                    callback(previous, target)
                except Exception:
                    log.exception("voice state subscriber failed")
        return True

    def _warn_once(self, key: str, note) -> None:
        if key in self._warned:
            return
        self._warned.add(key)
        self.notify(note)

    def _speech_supported(self) -> bool:
        if self.output is None or not self.output.supported:
            self._warn_once("synthesis", SYNTHESIS_UNSUPPORTED)
            return False
        return True

    def _start_listening(self) -> bool:
        if self.recognizer is None:
            self._warn_once("recognition", RECOGNITION_UNSUPPORTED)
            return False
        if self.recognizer.active:
            log.warning("recognition already running")
            return False
        self._session += 1
        try:
            self.recognizer.start(_SessionListener(self, self._session))
        except SpeechUnavailableError as exc:
            log.warning("recognition unavailable: %s", exc)
            self._warn_once("recognition", RECOGNITION_UNSUPPORTED)
            return False
        except RecognitionError as exc:
            self._handle_recognition_error(exc)
            return False
        new_trace_id()
        return self._fire(VoiceEvent.ACTIVATE)

    def _silence(self) -> None:
        self._utterance += 1
        if self.output is not None:
            self.output.cancel()

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        for callback in list(self._transcript_listeners):
            try:
                callback(event)
            except Exception:
                log.exception("transcript listener failed")
        text = event.text.strip()
        if not event.final or not text:
            return
        if not self._fire(VoiceEvent.FINAL_TRANSCRIPT):
            return
        task = asyncio.get_running_loop().create_task(self._think(text, self._epoch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_recognition_error(self, error: RecognitionError) -> None:
        if error.kind in _SILENT_RECOGNITION_ERRORS:
            self._fire(VoiceEvent.RECOGNITION_ENDED)
            return
        log.warning("recognition error %s: %s", error.kind, error)
        self._fire(VoiceEvent.RECOGNITION_ERROR)
        if error.kind == "service-not-allowed":
            self._warn_once("recognition", RECOGNITION_UNSUPPORTED)
        elif error.is_network:
            self.notify(RECOGNITION_NETWORK)
        else:
            self.notify(RECOGNITION_FAILED)

    async def _think(self, text: str, epoch: int) -> None:
        def still_wanted() -> bool:
            return self._epoch == epoch and self._state is VoiceState.THINKING

        reply = await self.controller.send_message(text, speak=False, should_commit=still_wanted)
        if not still_wanted():
            log.info("voice reply discarded after cancel")
            return
        if reply is None:
            self._fire(VoiceEvent.REPLY_FAILED)
            return
        if not self._speech_supported():
            self._fire(VoiceEvent.REPLY_FAILED)
            return
        self._fire(VoiceEvent.REPLY_READY)
        self._play(reply.content)

    def _play(self, text: str) -> None:
        assert self.output is not None
        self._utterance += 1
        token = self._utterance
        options = SpeakOptions(
            voice_gender=self.controller.session.voice,
            on_end=lambda: self._playback_finished(token, None),
            on_error=lambda exc: self._playback_finished(token, exc),
        )
        try:
            task = self.output.speak(text, options)
        except PlaybackError as exc:
            self._playback_finished(token, exc)
            return
        if task is None:
            self._playback_finished(token, None)

    def _playback_finished(self, token: int, error: Exception | None) -> None:
        if token != self._utterance:
            return
        if error is None:
            self._fire(VoiceEvent.PLAYBACK_ENDED)
            return
        log.warning("playback failed: %r", error)
        self._fire(VoiceEvent.PLAYBACK_ERROR)
        if isinstance(error, SpeechUnavailableError):
            self._warn_once("synthesis", SYNTHESIS_UNSUPPORTED)
        else:
            self.notify(PLAYBACK_FAILED)
