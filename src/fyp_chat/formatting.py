from __future__ import annotations

from datetime import datetime, timedelta

from fyp_chat.models import Message, MessageKind, PresenceState
from fyp_chat.presence import is_message_read
from fyp_chat.voice_notes import VOICE_NOTE_TTL, is_voice_note_expired


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_relative(moment: datetime, now: datetime) -> str:
    delta = now - moment
    seconds = int(delta.total_seconds())
    suffix = "ago"
    if seconds < 0:
        seconds = -seconds
        suffix = "from now"
    if seconds < 45:
        return "just now" if suffix == "ago" else "in a few seconds"
    minutes = round(seconds / 60)
    if minutes < 60:
        unit = "minute" if minutes == 1 else "minutes"
        return f"{minutes} {unit} {suffix}"
    hours = round(seconds / 3600)
    if hours < 24:
        unit = "hour" if hours == 1 else "hours"
        return f"{hours} {unit} {suffix}"
    days = round(seconds / 86400)
    unit = "day" if days == 1 else "days"
    return f"{days} {unit} {suffix}"


def format_message_time(created_at: datetime, now: datetime) -> str:
    if now - created_at < timedelta(hours=24):
        local = created_at.astimezone()
        return local.strftime("%I:%M %p").lstrip("0")
    return format_relative(created_at, now)


def format_presence(presence: PresenceState, now: datetime) -> str:
    if presence.recording:
        return "Recording audio..."
    if presence.typing:
        return "Typing..."
    if presence.online:
        return "Online"
    if presence.last_seen_at is not None:
        return f"Offline (last seen {format_relative(presence.last_seen_at, now)})"
    return "Offline"


def delivery_marker(message: Message) -> str:
    if message.pending:
        return "…"
    return "✓✓" if is_message_read(message) else "✓"


def format_body(message: Message, now: datetime, ttl: timedelta = VOICE_NOTE_TTL) -> str:
    if message.kind is MessageKind.AUDIO:
        if not message.pending and is_voice_note_expired(message.created_at, now, ttl):
            return "[Voice note expired]"
        duration = message.duration_seconds
        label = f"[Voice note {format_duration(duration)}]" if duration is not None else "[Voice note]"
        return f"{label} auto-deletes in {ttl.total_seconds() / 3600:g}h"
    if message.kind is MessageKind.FILE:
        return f"[File] {message.body}"
    return message.body


def format_message_line(
    message: Message,
    *,
    index: int,
    local_id: str,
    now: datetime,
    ttl: timedelta = VOICE_NOTE_TTL,
) -> str:
    own = message.sender_id == local_id
    who = "you" if own else message.sender_name
    line = f"[{index}] {format_message_time(message.created_at, now)} {who}: {format_body(message, now, ttl)}"
    if own:
        line += f" {delivery_marker(message)}"
    return line
