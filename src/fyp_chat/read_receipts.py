from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from fyp_chat.errors import StoreUnavailable
from fyp_chat.message_store import MessageStore
from fyp_chat.timeline import MessageTimeline


class ReadReceiptWriter:
    """Background writer for read receipts of the local participant.

    :meth:`sync` is cheap and safe to call on every timeline change: it queues
    one ``mark_read`` per unread message that is not already queued. The
    worker drains the queue in order, one store call per message.
    """

    def __init__(
        self,
        store: MessageStore,
        timeline: MessageTimeline,
        *,
        reader_id: str,
        on_marked: Callable[[str, tuple[str, ...]], None] | None = None,
    ) -> None:
        self._store = store
        self._timeline = timeline
        self._reader_id = reader_id
        self._on_marked = on_marked
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._queued: set[str] = set()
        self._task: asyncio.Task | None = None
        self._closed = False

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def sync(self) -> int:
        if self._closed:
            return 0
        queued = 0
        for message in self._timeline.unread_by(self._reader_id):
            if message.id is None or message.id in self._queued:
                continue
            self._queued.add(message.id)
            self._queue.put_nowait(message.id)
            queued += 1
        return queued

    async def drain(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            message_id = await self._queue.get()
            try:
                await self._mark(message_id)
            finally:
                self._queued.discard(message_id)
                self._queue.task_done()

    async def _mark(self, message_id: str) -> None:
        try:
            read_by = await self._store.mark_read(message_id, self._reader_id)
        except StoreUnavailable as ex:
            # The next timeline change queues it again.
            logger.warning(f"Could not mark {message_id} as read: {ex}")
            return
        if read_by:
            self._timeline.apply_update(message_id, read_by=read_by)
            if self._on_marked is not None:
                self._on_marked(message_id, read_by)
