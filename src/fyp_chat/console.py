"""Terminal front end: prints session events and routes typed lines."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx
from loguru import logger

from fyp_chat.app_config import AppConfig
from fyp_chat.commands.router import CommandRouter
from fyp_chat.formatting import format_duration, format_message_line, format_presence
from fyp_chat.models import Message, MessageKind, Notice, PresenceState, utc_now
from fyp_chat.presence import is_message_read
from fyp_chat.session import ChatSession

HELP_TEXT = """Commands:
  /history        show the conversation with delivery/read state
  /status         show the counterpart's presence
  /record         start a voice note
  /stop           stop recording and send the voice note
  /cancel         discard the current recording
  /play <n>       download and play voice note number n
  /reload         reload history from the server
  exit            leave the chat"""


class ChatConsole:
    """Terminal front end for one chat session."""

    def __init__(self, app: AppConfig, *, play: Callable[[bytes], None] | None = None):
        self._app = app
        self._play = play
        self._session: ChatSession | None = None
        self._printed: set[str] = set()
        self._shown_read: set[str] = set()
        self._router = CommandRouter(
            on_help=self._on_help,
            on_history=self._on_history,
            on_status=self._on_status,
            on_record=self._on_record,
            on_stop=self._on_stop,
            on_cancel=self._on_cancel,
            on_play=self._on_play,
            on_reload=self._on_reload,
            on_unknown=self._on_unknown,
        )

    def attach(self, session: ChatSession) -> None:
        self._session = session

    async def handle(self, line: str) -> None:
        if await self._router.try_handle(line):
            return
        session = self._require_session()
        if session.recorder.is_recording:
            print("Recording in progress: /stop to send or /cancel to discard")
            return
        await session.notify_typing()
        await session.send_text(line)

    def on_notice(self, notice: Notice) -> None:
        print(f"! {notice.text}")

    def on_presence_change(self, presence: PresenceState) -> None:
        print(f"* {format_presence(presence, utc_now())}")

    def on_timeline_change(self, messages: tuple[Message, ...]) -> None:
        session = self._session
        if session is None:
            return
        now = utc_now()
        local_id = session.participants.local.id
        for index, message in enumerate(messages, start=1):
            read = message.sender_id == local_id and not message.pending and is_message_read(message)
            if message.key not in self._printed:
                self._printed.add(message.key)
                if read:
                    self._shown_read.add(message.key)
                print(format_message_line(message, index=index, local_id=local_id, now=now, ttl=session.voice_note_ttl))
            elif read and message.key not in self._shown_read:
                self._shown_read.add(message.key)
                print(f"[{index}] read ✓✓")

    async def _on_help(self) -> None:
        print(HELP_TEXT)

    async def _on_history(self) -> None:
        session = self._require_session()
        now = utc_now()
        if not session.messages:
            print("No messages yet. Discuss your project with your supervisor here.")
        for index, message in enumerate(session.messages, start=1):
            print(
                format_message_line(
                    message,
                    index=index,
                    local_id=session.participants.local.id,
                    now=now,
                    ttl=session.voice_note_ttl,
                )
            )

    async def _on_status(self) -> None:
        session = self._require_session()
        counterpart = session.participants.counterpart
        print(f"{counterpart.name}: {format_presence(session.presence, utc_now())}")
        if session.recorder.is_recording:
            print(f"Recording {format_duration(session.recorder.duration)}")

    async def _on_record(self) -> None:
        session = self._require_session()
        if await session.start_recording():
            print("Recording... /stop to send, /cancel to discard")

    async def _on_stop(self) -> None:
        session = self._require_session()
        if not session.recorder.is_recording:
            print("Not recording")
            return
        await session.stop_recording()

    async def _on_cancel(self) -> None:
        session = self._require_session()
        if not session.recorder.is_recording:
            print("Not recording")
            return
        await session.cancel_recording()
        print("Recording discarded")

    async def _on_play(self, argument: str) -> None:
        session = self._require_session()
        try:
            message = session.messages[int(argument) - 1]
        except (ValueError, IndexError):
            print("Usage: /play <message number>")
            return
        if message.kind is not MessageKind.AUDIO:
            print("That message is not a voice note")
            return
        if session.playable_reference(message) is None:
            print("Voice note expired")
            return

        async with httpx.AsyncClient(timeout=30.0) as client:
            data = await session.download_voice_note(message, client)
        if data is None:
            return
        target_dir = Path(self._app.download_directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{message.id or message.key}.wav"
        target.write_bytes(data)
        print(f"Saved voice note to {target}")
        if self._app.play_voice_notes and self._play is not None:
            try:
                await asyncio.to_thread(self._play, data)
            except Exception as ex:
                logger.warning(f"Playback failed: {ex}")
                print(f"! Playback failed: {ex}")

    async def _on_reload(self) -> None:
        await self._require_session().reload_history()

    def _on_unknown(self, command: str) -> None:
        print(f"Unknown command: {command}. Type /help for commands.")

    def _require_session(self) -> ChatSession:
        if self._session is None:
            raise RuntimeError("Chat session is not attached")
        return self._session
