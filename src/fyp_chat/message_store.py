from __future__ import annotations

from typing import Any

from loguru import logger

from fyp_chat.backend import RelationalStore
from fyp_chat.errors import BackendError, MessageInsertFailed, StoreUnavailable
from fyp_chat.models import Message, MessageKind, message_from_row

_SENDER_JOIN = "*, sender:user_id (full_name, avatar_url)"


class MessageStore:
    """Persists and reads chat messages for one chat table."""

    def __init__(self, store: RelationalStore, *, table: str = "fyp_chat", session_column: str = "fyp_id"):
        self._table = store.table(table)
        self._table_name = table
        self._session_column = session_column

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def session_column(self) -> str:
        return self._session_column

    async def load_history(self, session_id: str) -> list[Message]:
        try:
            rows = await self._table.select(
                _SENDER_JOIN,
                filters={self._session_column: session_id},
                order_by="created_at",
                ascending=True,
            )
        except BackendError as ex:
            logger.error(f"Error fetching messages for {self._table_name} {session_id}: {ex}")
            raise StoreUnavailable() from ex
        messages = [message_from_row(row, session_column=self._session_column) for row in rows]
        # Stable sort keeps arrival order for equal timestamps.
        messages.sort(key=lambda m: m.created_at)
        logger.debug(f"Loaded {len(messages)} messages for session {session_id}")
        return messages

    async def fetch_message(self, message_id: str) -> Message | None:
        try:
            rows = await self._table.select(_SENDER_JOIN, filters={"id": message_id}, limit=1)
        except BackendError as ex:
            logger.warning(f"Could not fetch message {message_id}: {ex}")
            return None
        if not rows:
            return None
        return message_from_row(rows[0], session_column=self._session_column)

    async def append(
        self,
        session_id: str,
        sender_id: str,
        kind: MessageKind,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        row: dict[str, Any] = {
            self._session_column: session_id,
            "user_id": sender_id,
            "message": body,
            "message_type": kind.value,
            "read_by": [sender_id],
        }
        if metadata:
            row["metadata"] = dict(metadata)
        try:
            inserted = await self._table.insert(row)
        except BackendError as ex:
            logger.error(f"Insert into {self._table_name} failed: {ex}")
            raise MessageInsertFailed() from ex
        if not inserted or "id" not in inserted:
            raise MessageInsertFailed("Insert returned no row")
        logger.debug(f"Appended {kind.value} message {inserted['id']} to session {session_id}")
        return message_from_row(inserted, session_column=self._session_column)

    async def mark_read(self, message_id: str, reader_id: str) -> tuple[str, ...]:
        """Add ``reader_id`` to the message's ``read_by``; returns the resulting set.

        The current value is re-read before writing so the update is always a
        superset of what the store already holds.
        """
        try:
            rows = await self._table.select("id, read_by", filters={"id": message_id}, limit=1)
        except BackendError as ex:
            raise StoreUnavailable("Failed to update read state") from ex
        if not rows:
            return ()
        current = [str(r) for r in (rows[0].get("read_by") or [])]
        if reader_id in current:
            return tuple(current)

        updated = current + [reader_id]
        try:
            await self._table.update({"read_by": updated}, filters={"id": message_id})
        except BackendError as ex:
            raise StoreUnavailable("Failed to update read state") from ex
        return tuple(updated)
