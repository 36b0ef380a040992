from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from fyp_chat.backend import RealtimeChannel, RealtimeGateway, RowChange
from fyp_chat.models import utc_now

RowHandler = Callable[[dict[str, Any]], Awaitable[None] | None]
ParticipantHandler = Callable[[str], Awaitable[None] | None]
RecordingHandler = Callable[[str, bool], Awaitable[None] | None]
PresenceHandler = Callable[[set[str]], Awaitable[None] | None]

EVENT_TYPING = "typing"
EVENT_RECORDING = "recording"
EVENT_STOPPED_RECORDING = "stopped_recording"


def topic_for(table: str, session_id: str) -> str:
    return f"{table}:{session_id}"


class RealtimeChannelBinder:
    """Binds one session topic to local handlers.

    Handlers registered here only ever see events from the counterpart for
    inserts and ephemeral signals; updates are delivered for every row. Once
    :meth:`close` starts no handler is invoked again.
    """

    def __init__(
        self,
        gateway: RealtimeGateway,
        *,
        table: str,
        session_column: str,
        session_id: str,
        local_participant_id: str,
    ) -> None:
        self._table = table
        self._session_column = session_column
        self._session_id = session_id
        self._local_id = local_participant_id
        self._topic = topic_for(table, session_id)
        self._channel: RealtimeChannel = gateway.channel(self._topic)
        self._inserted: list[RowHandler] = []
        self._updated: list[RowHandler] = []
        self._typing: list[ParticipantHandler] = []
        self._recording: list[RecordingHandler] = []
        self._presence: list[PresenceHandler] = []
        self._tasks: set[asyncio.Task] = set()
        self._subscribed = False
        self._closed = False

        self._channel.on_row_change(
            table=table,
            filter=f"{session_column}=eq.{session_id}",
            callback=self._on_row_change,
        )
        self._channel.on_broadcast(EVENT_TYPING, self._on_typing)
        self._channel.on_broadcast(EVENT_RECORDING, self._on_recording)
        self._channel.on_broadcast(EVENT_STOPPED_RECORDING, self._on_stopped_recording)
        self._channel.on_presence_sync(self._on_presence_sync)

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_closed(self) -> bool:
        return self._closed

    def on_message_inserted(self, handler: RowHandler) -> None:
        self._inserted.append(handler)

    def on_message_updated(self, handler: RowHandler) -> None:
        self._updated.append(handler)

    def on_typing(self, handler: ParticipantHandler) -> None:
        self._typing.append(handler)

    def on_recording(self, handler: RecordingHandler) -> None:
        self._recording.append(handler)

    def on_presence_sync(self, handler: PresenceHandler) -> None:
        self._presence.append(handler)

    async def subscribe(self) -> None:
        if self._closed:
            raise RuntimeError(f"Channel {self._topic} is closed")
        if self._subscribed:
            return
        await self._channel.subscribe()
        self._subscribed = True
        logger.info(f"Subscribed to {self._topic}")

    async def track_presence(self, participant_id: str | None = None) -> None:
        if self._closed:
            return
        await self._channel.track(
            {
                "user_id": participant_id or self._local_id,
                "online_at": utc_now().isoformat(),
            }
        )

    async def send_typing(self) -> None:
        await self._send(EVENT_TYPING)

    async def send_recording(self, active: bool) -> None:
        await self._send(EVENT_RECORDING if active else EVENT_STOPPED_RECORDING)

    def tracked_participants(self) -> set[str]:
        participants: set[str] = set()
        for entries in self._channel.presence_state().values():
            for entry in entries or []:
                user_id = entry.get("user_id") if isinstance(entry, dict) else getattr(entry, "user_id", None)
                if user_id:
                    participants.add(str(user_id))
        return participants

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        if self._subscribed:
            try:
                await self._channel.unsubscribe()
            except Exception as ex:
                logger.warning(f"Unsubscribe from {self._topic} failed: {ex}")
        self._subscribed = False
        logger.info(f"Released {self._topic}")

    async def _send(self, event: str) -> None:
        if self._closed or not self._subscribed:
            return
        try:
            await self._channel.send_broadcast(event, {"user_id": self._local_id})
        except Exception as ex:
            # Ephemeral signals are best effort.
            logger.debug(f"Broadcast {event} on {self._topic} failed: {ex}")

    def _on_row_change(self, change: RowChange) -> None:
        if self._closed:
            return
        event_type = change.event_type.upper()
        if event_type == "INSERT":
            if str(change.new.get("user_id")) == self._local_id:
                return
            self._dispatch(self._inserted, dict(change.new))
        elif event_type == "UPDATE":
            self._dispatch(self._updated, dict(change.new))

    def _on_typing(self, payload: dict[str, Any]) -> None:
        sender = self._foreign_sender(payload)
        if sender is not None:
            self._dispatch(self._typing, sender)

    def _on_recording(self, payload: dict[str, Any]) -> None:
        sender = self._foreign_sender(payload)
        if sender is not None:
            self._dispatch(self._recording, sender, True)

    def _on_stopped_recording(self, payload: dict[str, Any]) -> None:
        sender = self._foreign_sender(payload)
        if sender is not None:
            self._dispatch(self._recording, sender, False)

    def _on_presence_sync(self) -> None:
        if self._closed:
            return
        self._dispatch(self._presence, self.tracked_participants())

    def _foreign_sender(self, payload: dict[str, Any]) -> str | None:
        if self._closed:
            return None
        sender = payload.get("user_id")
        if not sender or str(sender) == self._local_id:
            return None
        return str(sender)

    def _dispatch(self, handlers: list[Callable[..., Any]], *args: Any) -> None:
        for handler in list(handlers):
            if self._closed:
                return
            try:
                result = handler(*args)
            except Exception as ex:
                logger.error(f"Realtime handler failed on {self._topic}: {ex}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        ex = task.exception()
        if ex is not None:
            logger.error(f"Realtime handler failed on {self._topic}: {ex}")
