from __future__ import annotations

import asyncio
import contextlib
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from loguru import logger

from fyp_chat.audio import WAV_CONTENT_TYPE, WAV_EXTENSION, AudioInput, encode_wav
from fyp_chat.backend import ObjectStorage
from fyp_chat.errors import BackendError, EmptyRecording, MessageInsertFailed, UploadFailed, VoiceNoteExpired
from fyp_chat.message_store import MessageStore
from fyp_chat.models import Clock, Message, MessageKind, utc_now

VOICE_NOTE_TTL = timedelta(hours=24)


def is_voice_note_expired(created_at: datetime, now: datetime, ttl: timedelta = VOICE_NOTE_TTL) -> bool:
    return now - created_at >= ttl


def playable_reference(message: Message, now: datetime, ttl: timedelta = VOICE_NOTE_TTL) -> str | None:
    """The URI to play for an audio message, or None when it must not be fetched."""
    if message.kind is not MessageKind.AUDIO or not message.body:
        return None
    if message.pending:
        return message.body
    if is_voice_note_expired(message.created_at, now, ttl):
        return None
    return message.body


async def fetch_voice_note(
    message: Message,
    *,
    client: httpx.AsyncClient,
    now: datetime,
    ttl: timedelta = VOICE_NOTE_TTL,
) -> bytes:
    reference = playable_reference(message, now, ttl)
    if reference is None:
        raise VoiceNoteExpired()

    parsed = urlparse(reference)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path)).read_bytes()

    try:
        response = await client.get(reference, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as ex:
        raise BackendError(f"Voice note download failed: {ex}") from ex
    return response.content


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SENDING = "sending"


@dataclass(frozen=True)
class CapturedAudio:
    data: bytes
    duration_seconds: int
    content_type: str = WAV_CONTENT_TYPE
    extension: str = WAV_EXTENSION


class VoiceNoteRecorder:
    """idle -> recording -> (sending -> idle) | (cancelled -> idle)."""

    def __init__(
        self,
        input_factory: Callable[[], AudioInput],
        *,
        on_recording_changed: Callable[[bool], Awaitable[None]],
        tick_seconds: float = 1.0,
    ) -> None:
        self._input_factory = input_factory
        self._on_recording_changed = on_recording_changed
        self._tick_seconds = tick_seconds
        self._input: AudioInput | None = None
        self._timer_task: asyncio.Task | None = None
        self._state = RecorderState.IDLE
        self._duration = 0

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def duration(self) -> int:
        return self._duration

    @property
    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    async def start(self) -> None:
        if self._state is not RecorderState.IDLE:
            logger.debug(f"Ignoring start while {self._state.value}")
            return
        audio_input = self._input_factory()
        # Raises MicrophoneUnavailable; state stays idle.
        audio_input.open()
        self._input = audio_input
        self._duration = 0
        self._state = RecorderState.RECORDING
        self._timer_task = asyncio.create_task(self._tick())
        logger.info("Voice recording started")
        await self._on_recording_changed(True)

    async def stop(self) -> CapturedAudio | None:
        if self._state is not RecorderState.RECORDING or self._input is None:
            return None
        audio_input = self._input
        pcm = audio_input.drain()
        await self._release()
        duration = self._duration
        self._state = RecorderState.SENDING
        await self._on_recording_changed(False)

        if not pcm:
            logger.warning("Audio capture is empty, skipping upload")
            self.finish_sending()
            raise EmptyRecording()

        logger.info(f"Voice recording stopped ({duration}s, {len(pcm)} bytes)")
        return CapturedAudio(
            data=encode_wav(
                pcm,
                sample_rate=audio_input.sample_rate,
                channels=audio_input.channels,
                sample_width=audio_input.sample_width,
            ),
            duration_seconds=duration,
        )

    def finish_sending(self) -> None:
        self._state = RecorderState.IDLE
        self._duration = 0

    async def cancel(self) -> None:
        if self._state is not RecorderState.RECORDING:
            return
        if self._input is not None:
            self._input.drain()
        await self._release()
        self._state = RecorderState.IDLE
        self._duration = 0
        logger.info("Voice recording cancelled")
        await self._on_recording_changed(False)

    async def _release(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        audio_input, self._input = self._input, None
        if audio_input is not None:
            audio_input.close()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self._duration += 1


class VoiceNoteUploader:
    """Uploads a captured note and records the message that references it."""

    def __init__(self, storage: ObjectStorage, store: MessageStore, *, clock: Clock = utc_now):
        self._storage = storage
        self._store = store
        self._clock = clock

    def object_path(self, session_id: str, sender_id: str, extension: str = WAV_EXTENSION) -> str:
        timestamp_ms = int(self._clock().timestamp() * 1000)
        return f"{session_id}/{sender_id}/{timestamp_ms}.{extension}"

    async def publish(self, session_id: str, sender_id: str, audio: CapturedAudio) -> Message:
        path = self.object_path(session_id, sender_id, audio.extension)
        logger.info(f"Uploading voice note: {path} Size: {len(audio.data)}")
        try:
            await self._storage.upload(path, audio.data, audio.content_type)
            url = await self._storage.public_url(path)
        except BackendError as ex:
            logger.error(f"Storage upload error for {path}: {ex}")
            raise UploadFailed() from ex

        try:
            return await self._store.append(
                session_id,
                sender_id,
                MessageKind.AUDIO,
                url,
                {"duration": audio.duration_seconds},
            )
        except MessageInsertFailed:
            logger.warning(f"Voice note {path} was uploaded but its message was not recorded; blob left in storage")
            raise


def write_preview(audio: CapturedAudio) -> Path:
    """Write a local copy of the note so it can be played before the upload completes."""
    with tempfile.NamedTemporaryFile(prefix="fyp-chat-", suffix=f".{audio.extension}", delete=False) as fh:
        fh.write(audio.data)
        return Path(fh.name)
