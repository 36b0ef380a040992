from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

Clock = Callable[[], datetime]

UNKNOWN_SENDER = "Unknown User"


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime:
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def new_local_key() -> str:
    return f"local-{uuid4().hex}"


class MessageKind(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    FILE = "file"
    SYSTEM = "system"


class DeliveryState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class Participant:
    id: str
    name: str = UNKNOWN_SENDER
    avatar_url: str | None = None


@dataclass(frozen=True)
class Participants:
    """The fixed pair of identities in one chat session."""

    local: Participant
    counterpart: Participant

    def is_local(self, participant_id: str | None) -> bool:
        return participant_id == self.local.id


@dataclass(frozen=True)
class Message:
    """One entry of a session's timeline.

    ``key`` identifies the entry locally for its whole lifetime. Confirmed rows
    loaded from the store use their server id as key; optimistic placeholders
    get a ``local-`` key and ``id=None`` until the insert is confirmed.
    """

    key: str
    id: str | None
    session_id: str
    sender_id: str
    kind: MessageKind
    body: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    read_by: tuple[str, ...] = ()
    sender_name: str = UNKNOWN_SENDER
    sender_avatar: str | None = None
    state: DeliveryState = DeliveryState.CONFIRMED

    @property
    def pending(self) -> bool:
        return self.state is DeliveryState.PENDING

    @property
    def duration_seconds(self) -> int | None:
        value = self.metadata.get("duration")
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def is_read_by(self, participant_id: str) -> bool:
        return participant_id in self.read_by

    def with_readers(self, readers: tuple[str, ...] | list[str]) -> Message:
        """Return a copy whose ``read_by`` is the ordered union with ``readers``."""
        merged = list(self.read_by)
        for reader in readers:
            if reader not in merged:
                merged.append(reader)
        if len(merged) == len(self.read_by):
            return self
        return replace(self, read_by=tuple(merged))


def placeholder_message(
    *,
    session_id: str,
    sender: Participant,
    kind: MessageKind,
    body: str,
    metadata: dict[str, Any] | None,
    created_at: datetime,
) -> Message:
    return Message(
        key=new_local_key(),
        id=None,
        session_id=session_id,
        sender_id=sender.id,
        kind=kind,
        body=body,
        created_at=created_at,
        metadata=dict(metadata or {}),
        read_by=(sender.id,),
        sender_name=sender.name,
        sender_avatar=sender.avatar_url,
        state=DeliveryState.PENDING,
    )


def message_from_row(row: dict[str, Any], *, session_column: str) -> Message:
    """Build a confirmed message from a chat table row (optionally joined with ``sender``)."""
    sender = row.get("sender") or {}
    raw_kind = str(row.get("message_type") or MessageKind.TEXT.value)
    try:
        kind = MessageKind(raw_kind)
    except ValueError:
        kind = MessageKind.TEXT
    metadata = row.get("metadata")
    message_id = str(row["id"])
    return Message(
        key=message_id,
        id=message_id,
        session_id=str(row.get(session_column, "")),
        sender_id=str(row.get("user_id", "")),
        kind=kind,
        body=str(row.get("message") or ""),
        created_at=parse_timestamp(row.get("created_at")),
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
        read_by=tuple(str(r) for r in (row.get("read_by") or [])),
        sender_name=sender.get("full_name") or UNKNOWN_SENDER,
        sender_avatar=sender.get("avatar_url") or None,
    )


@dataclass(frozen=True)
class PresenceState:
    online: bool = False
    last_seen_at: datetime | None = None
    typing: bool = False
    recording: bool = False


@dataclass(frozen=True)
class Notice:
    """A transient, user-visible notification."""

    level: str
    text: str
    code: str | None = None
