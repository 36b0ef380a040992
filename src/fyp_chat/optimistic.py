from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from fyp_chat.errors import ChatError
from fyp_chat.message_store import MessageStore
from fyp_chat.models import Clock, Message, MessageKind, Notice, Participant, placeholder_message, utc_now
from fyp_chat.timeline import MessageTimeline

NoticeCallback = Callable[[Notice], None]


class OptimisticPipeline:
    """Shows outgoing messages immediately and reconciles them with the store.

    Each send owns exactly one placeholder. On success the placeholder is
    replaced in place; on failure it is removed and a notice is raised. Nothing
    is retried automatically.
    """

    def __init__(
        self,
        *,
        timeline: MessageTimeline,
        store: MessageStore,
        session_id: str,
        sender: Participant,
        on_notice: NoticeCallback,
        clock: Clock = utc_now,
    ) -> None:
        self._timeline = timeline
        self._store = store
        self._session_id = session_id
        self._sender = sender
        self._on_notice = on_notice
        self._clock = clock
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def send_text(self, text: str) -> Message | None:
        body = text.strip()
        if not body:
            return None
        return await self.dispatch(
            kind=MessageKind.TEXT,
            preview_body=body,
            persist=lambda: self._store.append(self._session_id, self._sender.id, MessageKind.TEXT, body),
            failure_text="Failed to send message",
        )

    async def dispatch(
        self,
        *,
        kind: MessageKind,
        preview_body: str,
        persist: Callable[[], Awaitable[Message]],
        metadata: dict[str, Any] | None = None,
        failure_text: str,
    ) -> Message | None:
        placeholder = placeholder_message(
            session_id=self._session_id,
            sender=self._sender,
            kind=kind,
            body=preview_body,
            metadata=metadata,
            created_at=self._clock(),
        )
        self._timeline.add_pending(placeholder)
        self._in_flight.add(placeholder.key)
        try:
            persisted = await persist()
        except ChatError as ex:
            logger.error(f"Error sending {kind.value} message: {ex.code} {ex.message}")
            self._timeline.discard(placeholder.key)
            self._on_notice(Notice(level="error", text=failure_text, code=ex.code))
            return None
        finally:
            self._in_flight.discard(placeholder.key)

        confirmed = self._timeline.confirm(placeholder.key, persisted)
        logger.debug(f"Confirmed {placeholder.key} as {persisted.id}")
        return confirmed
