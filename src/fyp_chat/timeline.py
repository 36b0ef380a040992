from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import replace

from fyp_chat.models import DeliveryState, Message


class MessageTimeline:
    """The locally visible, ordered message list of one session.

    History loads are sorted by ``created_at``; everything after that is
    positional: placeholders and realtime arrivals go to the end, and
    confirmations replace the placeholder where it stands.
    """

    def __init__(self) -> None:
        self._entries: list[Message] = []
        self._listeners: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._entries))

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._entries)

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def get(self, key: str) -> Message | None:
        index = self._index_of_key(key)
        return None if index is None else self._entries[index]

    def find_by_id(self, message_id: str) -> Message | None:
        index = self._index_of_id(message_id)
        return None if index is None else self._entries[index]

    def load(self, messages: list[Message]) -> None:
        """Merge fetched history by id, keeping any in-flight placeholders at the end.

        Confirmed entries missing from ``messages`` are kept: they arrived or
        were confirmed after the history query read its rows.
        """
        pending = [m for m in self._entries if m.pending]
        fetched_ids = {m.id for m in messages if m.id is not None}
        newer = [m for m in self._entries if not m.pending and m.id is not None and m.id not in fetched_ids]
        ordered = sorted([*messages, *newer], key=lambda m: m.created_at)
        seen: set[str] = set()
        entries: list[Message] = []
        for message in ordered:
            if message.id is not None and message.id in seen:
                continue
            if message.id is not None:
                seen.add(message.id)
            previous = self.find_by_id(message.id) if message.id else None
            if previous is not None:
                message = message.with_readers(previous.read_by)
            entries.append(message)
        self._entries = entries + pending
        self._notify()

    def add_pending(self, message: Message) -> None:
        if not message.pending:
            raise ValueError("Only pending messages can be added as placeholders")
        if self._index_of_key(message.key) is not None:
            raise ValueError(f"Duplicate placeholder key: {message.key}")
        self._entries.append(message)
        self._notify()

    def confirm(self, key: str, persisted: Message) -> Message | None:
        """Swap a placeholder for its persisted record without moving it."""
        index = self._index_of_key(key)
        if index is None:
            return None
        placeholder = self._entries[index]
        confirmed = replace(
            placeholder,
            id=persisted.id,
            body=persisted.body,
            created_at=persisted.created_at,
            metadata=persisted.metadata or placeholder.metadata,
            state=DeliveryState.CONFIRMED,
        ).with_readers(persisted.read_by)
        # A history reload may already have brought the row in; keep one copy.
        if persisted.id is not None:
            duplicate = self._index_of_id(persisted.id)
            if duplicate is not None and duplicate != index:
                confirmed = confirmed.with_readers(self._entries[duplicate].read_by)
                del self._entries[duplicate]
                if duplicate < index:
                    index -= 1
        self._entries[index] = confirmed
        self._notify()
        return confirmed

    def discard(self, key: str) -> bool:
        index = self._index_of_key(key)
        if index is None:
            return False
        del self._entries[index]
        self._notify()
        return True

    def append_remote(self, message: Message) -> bool:
        """Append a message delivered by the realtime channel; ignores known ids."""
        if message.id is not None and self._index_of_id(message.id) is not None:
            return False
        self._entries.append(message)
        self._notify()
        return True

    def apply_update(self, message_id: str, *, read_by: tuple[str, ...] | list[str]) -> Message | None:
        index = self._index_of_id(message_id)
        if index is None:
            return None
        current = self._entries[index]
        updated = current.with_readers(tuple(read_by))
        if updated is not current:
            self._entries[index] = updated
            self._notify()
        return updated

    def unread_by(self, participant_id: str) -> list[Message]:
        return [
            m
            for m in self._entries
            if not m.pending and m.id is not None and m.sender_id != participant_id and not m.is_read_by(participant_id)
        ]

    def _index_of_key(self, key: str) -> int | None:
        for i, message in enumerate(self._entries):
            if message.key == key:
                return i
        return None

    def _index_of_id(self, message_id: str) -> int | None:
        for i, message in enumerate(self._entries):
            if message.id == message_id:
                return i
        return None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
