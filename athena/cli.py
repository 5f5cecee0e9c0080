from __future__ import annotations

import asyncio
import base64
import json
import mimetypes
from pathlib import Path
from typing import Callable, Optional

import typer

from athena.core.config import Settings, get_settings
from athena.core.controller import ConversationController
from athena.core.errors import GenerationError, Notification, PlaybackError
from athena.core.logger import enable_console
from athena.core.models import Attachment, AttachmentKind, Role, VoicePreference
from athena.core.session import ChatSession
from athena.core.store import JsonFileStore
from athena.core.transcript import DirectorySink
from athena.services.analysis import DocumentAnalyzer
from athena.services.gemini import GeminiClient
from athena.voice.machine import PLAYBACK_FAILED, SYNTHESIS_UNSUPPORTED, VoiceState, VoiceStateMachine
from athena.voice.output import SpeakOptions, SpeechOutputChannel


cli = typer.Typer(name="athena", help="Athena assistant CLI")
chats_cli = typer.Typer(help="Saved chats")
config_cli = typer.Typer(help="Configuration")

cli.add_typer(chats_cli, name="chats")
cli.add_typer(config_cli, name="config")


@cli.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Mirror logs to stderr")) -> None:
    if verbose:
        enable_console()


CHAT_HELP = """Commands:
  /new                 start a new chat
  /chats               list chats
  /switch <n|id>       switch to a chat
  /delete [n|id]       delete a chat (default: the active one)
  /clear               clear the active chat
  /export              save the active chat as a text file
  /regen               regenerate the last answer
  /attach <path>       attach a file to the next message
  /voice-mode          toggle spoken answers
  /voice <female|male> choose the voice
  /quit                leave"""

_SECRET_FIELDS = {"google_api_key"}


def format_notification(note: Notification) -> str:
    marker = "!" if note.is_error else "*"
    return f"{marker} {note.title}: {note.description}"


def _echo_notification(note: Notification) -> None:
    typer.echo(format_notification(note), err=note.is_error)


def attachment_from_path(path: Path) -> Attachment:
    """Images become data URIs; anything else is read as text."""
    data = path.read_bytes()
    mime, _ = mimetypes.guess_type(path.name)
    if mime and mime.startswith("image/"):
        uri = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        return Attachment(name=path.name, kind=AttachmentKind.IMAGE, content=uri)
    return Attachment(name=path.name, kind=AttachmentKind.DOCUMENT, content=data.decode("utf-8", errors="replace"))


def reply_speaker(channel: SpeechOutputChannel, controller: ConversationController) -> Callable[[str], None]:
    """Speaker for text-chat voice mode; playback failures reach the user."""

    def failed(exc: Exception) -> None:
        controller.notify(PLAYBACK_FAILED)

    def speak(text: str) -> None:
        try:
            channel.speak(text, SpeakOptions(voice_gender=controller.session.voice, on_error=failed))
        except PlaybackError as exc:
            failed(exc)

    return speak


def _build_controller(settings: Settings, client: GeminiClient | None = None) -> ConversationController:
    client = client or GeminiClient(settings)
    session = ChatSession(JsonFileStore(settings.store_path)).load()
    return ConversationController(
        session,
        client,
        notify=_echo_notification,
        sink=DirectorySink(Path(settings.export_dir)),
        analyzer=DocumentAnalyzer(client),
        settings=settings,
    )


def _resolve_chat_ref(controller: ConversationController, ref: str) -> str | None:
    chats = controller.list_chats()
    if ref.isdigit():
        index = int(ref) - 1
        return chats[index].id if 0 <= index < len(chats) else None
    return ref if controller.session.get_chat(ref) is not None else None


def _print_chats(controller: ConversationController, settings: Settings) -> None:
    active = controller.active_chat_id
    for number, chat in enumerate(controller.list_chats(), start=1):
        marker = "*" if chat.id == active else " "
        title = chat.display_title(settings.title_max_chars)
        typer.echo(f"{marker} {number:>2}. {title} ({len(chat.messages)} messages) [{chat.id}]")


def _print_reply(content: str) -> None:
    typer.echo(f"athena> {content}")


@chats_cli.command("list")
def chats_list() -> None:
    settings = get_settings()
    _print_chats(_build_controller(settings), settings)


@chats_cli.command("export")
def chats_export(chat: Optional[str] = typer.Option(None, "--chat", help="Chat number or id")) -> None:
    settings = get_settings()
    controller = _build_controller(settings)
    if chat is not None:
        chat_id = _resolve_chat_ref(controller, chat)
        if chat_id is None:
            typer.echo(f"Chat not found: {chat}")
            raise typer.Exit(code=1)
        controller.set_active_chat(chat_id)
    path = controller.export_chat()
    if path is None:
        raise typer.Exit(code=1)
    typer.echo(str(path))


@config_cli.command("print")
def config_print() -> None:
    s = Settings()
    data = s.model_dump()
    for key in _SECRET_FIELDS:
        if data.get(key):
            data[key] = "***"
    typer.echo(json.dumps(data, ensure_ascii=False, default=str))


@cli.command()
def resources() -> None:
    """Suggest articles and videos related to the active chat."""
    controller = _build_controller(get_settings())
    items = asyncio.run(controller.suggest_resources())
    if not items:
        typer.echo("No suggestions.")
    for item in items:
        typer.echo(f"- {item}")


@cli.command()
def summarize(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file to summarize")) -> None:
    """Summarize a text document."""
    analyzer = DocumentAnalyzer(GeminiClient(get_settings()))
    text = path.read_text(encoding="utf-8", errors="replace")
    try:
        summary = asyncio.run(analyzer.summarize(text))
    except GenerationError as exc:
        typer.echo(f"Summary failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(summary)


@cli.command()
def chat() -> None:
    """Interactive chat in the terminal."""
    settings = get_settings()
    asyncio.run(_chat_loop(settings))


async def _send_line(
    controller: ConversationController, line: str, pending: list[Attachment]
) -> list[Attachment]:
    """Send one chat line; returns the attachments still waiting to go out."""
    reply = await controller.send_message(line, pending)
    if reply is None:
        return pending
    _print_reply(reply.content)
    return []


async def _chat_loop(settings: Settings) -> None:
    from athena.voice.engines import build_output_channel

    client = GeminiClient(settings)
    controller = _build_controller(settings, client)
    channel = None
    pending: list[Attachment] = []
    typer.echo("Athena chat. Type /help for commands.")
    while True:
        try:
            line = await asyncio.to_thread(input, "you> ")
        except (EOFError, KeyboardInterrupt):
            break
        line = line.strip()
        if not line:
            continue
        if not line.startswith("/"):
            pending = await _send_line(controller, line, pending)
            continue

        command, _, arg = line.partition(" ")
        arg = arg.strip()
        if command == "/quit":
            break
        elif command == "/help":
            typer.echo(CHAT_HELP)
        elif command == "/new":
            controller.create_new_chat()
            typer.echo("Started a new chat.")
        elif command == "/chats":
            _print_chats(controller, settings)
        elif command == "/switch":
            chat_id = _resolve_chat_ref(controller, arg)
            if chat_id is None:
                typer.echo(f"Chat not found: {arg}")
                continue
            controller.set_active_chat(chat_id)
            for message in controller.messages:
                prefix = "you> " if message.role is Role.USER else "athena> "
                typer.echo(f"{prefix}{message.content}")
        elif command == "/delete":
            chat_id = _resolve_chat_ref(controller, arg) if arg else controller.active_chat_id
            if chat_id is None or not controller.delete_chat(chat_id):
                typer.echo(f"Chat not found: {arg}")
        elif command == "/clear":
            controller.clear_chat()
        elif command == "/export":
            path = controller.export_chat()
            if path is not None:
                typer.echo(str(path))
        elif command == "/regen":
            reply = await controller.regenerate_response()
            if reply is not None:
                _print_reply(reply.content)
        elif command == "/attach":
            target = Path(arg).expanduser()
            if not target.is_file():
                typer.echo(f"File not found: {arg}")
                continue
            pending.append(attachment_from_path(target))
            typer.echo(f"Attached {target.name} ({len(pending)} pending)")
        elif command == "/voice-mode":
            if not controller.voice_chat_mode and channel is None:
                channel = build_output_channel(settings, client)
                controller.speaker = reply_speaker(channel, controller)
            if not controller.voice_chat_mode and not channel.supported:
                _echo_notification(SYNTHESIS_UNSUPPORTED)
                continue
            controller.voice_chat_mode = not controller.voice_chat_mode
            if not controller.voice_chat_mode and channel is not None:
                channel.cancel()
            typer.echo(f"Voice chat mode {'on' if controller.voice_chat_mode else 'off'}.")
        elif command == "/voice":
            try:
                controller.set_voice(VoicePreference(arg.lower()))
            except ValueError:
                typer.echo("Usage: /voice female|male")
                continue
            typer.echo(f"Voice set to {controller.session.voice.value}.")
        else:
            typer.echo(f"Unknown command {command}. Type /help.")

    if channel is not None:
        channel.cancel()


@cli.command()
def voice() -> None:
    """Push-to-talk voice conversation: Enter toggles the microphone."""
    settings = get_settings()
    asyncio.run(_voice_loop(settings))


async def _voice_loop(settings: Settings) -> None:
    from athena.voice.engines import build_output_channel
    from athena.voice.recognition import WhisperRecognizer

    client = GeminiClient(settings)
    controller = _build_controller(settings, client)
    machine = VoiceStateMachine(
        controller,
        WhisperRecognizer(settings),
        build_output_channel(settings, client),
    )

    def on_state(old: VoiceState, new: VoiceState) -> None:
        if old is VoiceState.THINKING and new is VoiceState.SPEAKING and controller.messages:
            _print_reply(controller.messages[-1].content)
        typer.echo(f"[{new.value}]")

    machine.subscribe(on_state)
    machine.add_transcript_listener(lambda event: typer.echo(f"you> {event.text}") if event.final else None)
    typer.echo("Press Enter to talk or to stop talking, 'c' to cancel, 'q' to quit.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input)
            except (EOFError, KeyboardInterrupt):
                break
            command = line.strip().lower()
            if command in {"q", "quit", "/quit"}:
                break
            if command in {"c", "cancel"}:
                machine.cancel()
                continue
            machine.toggle_listening()
    finally:
        machine.close()


if __name__ == "__main__":
    cli()
