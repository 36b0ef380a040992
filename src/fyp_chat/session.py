from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from fyp_chat.audio import AudioInput
from fyp_chat.backend import ObjectStorage, RealtimeGateway
from fyp_chat.channel_binder import RealtimeChannelBinder
from fyp_chat.errors import BackendError, ChatError, EmptyRecording, MicrophoneUnavailable, StoreUnavailable, UploadFailed
from fyp_chat.heartbeat import DEFAULT_HEARTBEAT_INTERVAL_SECONDS, Heartbeat
from fyp_chat.message_store import MessageStore
from fyp_chat.models import (
    Clock,
    Message,
    MessageKind,
    Notice,
    Participants,
    PresenceState,
    message_from_row,
    utc_now,
)
from fyp_chat.optimistic import OptimisticPipeline
from fyp_chat.presence import (
    DEFAULT_RECORDING_TIMEOUT_SECONDS,
    DEFAULT_TYPING_TIMEOUT_SECONDS,
    DecayScheduler,
    PresenceTracker,
    is_message_read,
)
from fyp_chat.profiles import ProfileDirectory
from fyp_chat.read_receipts import ReadReceiptWriter
from fyp_chat.timeline import MessageTimeline
from fyp_chat.voice_notes import (
    VOICE_NOTE_TTL,
    VoiceNoteRecorder,
    VoiceNoteUploader,
    fetch_voice_note,
    playable_reference,
    write_preview,
)


class LoadState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionOptions:
    typing_timeout_seconds: float = DEFAULT_TYPING_TIMEOUT_SECONDS
    recording_timeout_seconds: float = DEFAULT_RECORDING_TIMEOUT_SECONDS
    heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS
    voice_note_ttl: timedelta = VOICE_NOTE_TTL
    recording_tick_seconds: float = 1.0


class ChatSession:
    """A two-party chat bound to one session id.

    Wires the store, realtime channel, optimistic pipeline, voice notes,
    presence and read receipts together. Every user action converts its
    failures into a :class:`Notice`; nothing here raises to the caller for
    expected service failures.
    """

    def __init__(
        self,
        *,
        session_id: str,
        participants: Participants,
        store: MessageStore,
        gateway: RealtimeGateway,
        storage: ObjectStorage,
        profiles: ProfileDirectory,
        audio_input_factory: Callable[[], AudioInput],
        options: SessionOptions | None = None,
        clock: Clock = utc_now,
        on_notice: Callable[[Notice], None] | None = None,
        on_presence_change: Callable[[PresenceState], None] | None = None,
        on_timeline_change: Callable[[tuple[Message, ...]], None] | None = None,
    ) -> None:
        self._session_id = session_id
        self._participants = participants
        self._store = store
        self._options = options or SessionOptions()
        self._clock = clock
        self._on_notice_cb = on_notice
        self._on_timeline_change = on_timeline_change
        self._load_state = LoadState.LOADING
        self._started = False
        self._closed = False

        local_id = participants.local.id
        self.timeline = MessageTimeline()
        self._binder = RealtimeChannelBinder(
            gateway,
            table=store.table_name,
            session_column=store.session_column,
            session_id=session_id,
            local_participant_id=local_id,
        )
        self._pipeline = OptimisticPipeline(
            timeline=self.timeline,
            store=store,
            session_id=session_id,
            sender=participants.local,
            on_notice=self._notice,
            clock=clock,
        )
        self._presence = PresenceTracker(
            local_id=local_id,
            counterpart_id=participants.counterpart.id,
            profiles=profiles,
            scheduler=DecayScheduler(),
            typing_timeout=self._options.typing_timeout_seconds,
            recording_timeout=self._options.recording_timeout_seconds,
            on_change=on_presence_change,
        )
        self._receipts = ReadReceiptWriter(store, self.timeline, reader_id=local_id)
        self._heartbeat = Heartbeat(
            profiles,
            local_id,
            interval_seconds=self._options.heartbeat_interval_seconds,
            clock=clock,
        )
        self._recorder = VoiceNoteRecorder(
            audio_input_factory,
            on_recording_changed=self._binder.send_recording,
            tick_seconds=self._options.recording_tick_seconds,
        )
        self._uploader = VoiceNoteUploader(storage, store, clock=clock)

        self.timeline.add_listener(self._timeline_changed)
        self._binder.on_message_inserted(self._on_remote_insert)
        self._binder.on_message_updated(self._on_remote_update)
        self._binder.on_typing(self._presence.handle_typing)
        self._binder.on_recording(self._presence.handle_recording)
        self._binder.on_presence_sync(self._presence.handle_presence_sync)

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def participants(self) -> Participants:
        return self._participants

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.timeline.snapshot()

    @property
    def presence(self) -> PresenceState:
        return self._presence.state

    @property
    def voice_note_ttl(self) -> timedelta:
        return self._options.voice_note_ttl

    @property
    def recorder(self) -> VoiceNoteRecorder:
        return self._recorder

    @property
    def binder(self) -> RealtimeChannelBinder:
        return self._binder

    @property
    def heartbeat(self) -> Heartbeat:
        return self._heartbeat

    @property
    def read_receipts(self) -> ReadReceiptWriter:
        return self._receipts

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._receipts.start()
        try:
            await self._binder.subscribe()
            await self._binder.track_presence()
        except BackendError as ex:
            # History still loads; the view just stays without live updates.
            self._notice_from(ex)
        await self._presence.refresh_last_seen()
        await self._heartbeat.start()
        await self.reload_history()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._recorder.cancel()
        await self._heartbeat.stop()
        await self._binder.close()
        await self._receipts.close()
        self._presence.close()
        logger.info(f"Chat session {self._session_id} closed")

    async def __aenter__(self) -> ChatSession:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def reload_history(self) -> bool:
        try:
            history = await self._store.load_history(self._session_id)
        except StoreUnavailable as ex:
            if self._load_state is not LoadState.READY:
                self._load_state = LoadState.FAILED
            self._notice_from(ex)
            return False
        self.timeline.load(history)
        self._load_state = LoadState.READY
        return True

    # --- User actions ---

    async def send_text(self, text: str) -> Message | None:
        return await self._pipeline.send_text(text)

    async def notify_typing(self) -> None:
        await self._binder.send_typing()

    async def start_recording(self) -> bool:
        try:
            await self._recorder.start()
        except MicrophoneUnavailable as ex:
            self._notice_from(ex)
            return False
        return self._recorder.is_recording

    async def cancel_recording(self) -> None:
        await self._recorder.cancel()

    async def stop_recording(self) -> Message | None:
        try:
            audio = await self._recorder.stop()
        except EmptyRecording as ex:
            self._notice_from(ex)
            return None
        if audio is None:
            return None

        sender_id = self._participants.local.id
        preview: Path | None = None
        try:
            try:
                preview = write_preview(audio)
            except OSError as ex:
                logger.warning(f"Could not write voice note preview: {ex}")
                self._notice_from(UploadFailed())
                return None
            return await self._pipeline.dispatch(
                kind=MessageKind.AUDIO,
                preview_body=preview.as_uri(),
                metadata={"duration": audio.duration_seconds},
                persist=lambda: self._uploader.publish(self._session_id, sender_id, audio),
                failure_text="Failed to send voice note",
            )
        finally:
            self._recorder.finish_sending()
            if preview is not None:
                preview.unlink(missing_ok=True)

    # --- Display helpers ---

    def is_read(self, message: Message) -> bool:
        return is_message_read(message)

    def is_own(self, message: Message) -> bool:
        return self._participants.is_local(message.sender_id)

    def playable_reference(self, message: Message) -> str | None:
        return playable_reference(message, self._clock(), self._options.voice_note_ttl)

    async def download_voice_note(self, message: Message, client: httpx.AsyncClient) -> bytes | None:
        try:
            return await fetch_voice_note(
                message,
                client=client,
                now=self._clock(),
                ttl=self._options.voice_note_ttl,
            )
        except ChatError as ex:
            self._notice_from(ex)
            return None

    # --- Realtime handlers ---

    async def _on_remote_insert(self, row: dict[str, Any]) -> None:
        message_id = row.get("id")
        if message_id is None:
            return
        message = await self._store.fetch_message(str(message_id))
        if message is None:
            message = message_from_row(row, session_column=self._store.session_column)
        if self._binder.is_closed:
            return
        self.timeline.append_remote(message)

    def _on_remote_update(self, row: dict[str, Any]) -> None:
        message_id = row.get("id")
        if message_id is None:
            return
        self.timeline.apply_update(str(message_id), read_by=[str(r) for r in (row.get("read_by") or [])])

    def _timeline_changed(self) -> None:
        self._receipts.sync()
        if self._on_timeline_change is not None:
            self._on_timeline_change(self.timeline.snapshot())

    # --- Notices ---

    def _notice_from(self, ex: ChatError) -> None:
        logger.warning(f"{ex.code}: {ex.message}")
        self._notice(Notice(level="error", text=ex.message, code=ex.code))

    def _notice(self, notice: Notice) -> None:
        if self._on_notice_cb is not None:
            self._on_notice_cb(notice)
