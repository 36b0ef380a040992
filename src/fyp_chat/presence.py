from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from loguru import logger

from fyp_chat.errors import BackendError
from fyp_chat.models import Message, PresenceState
from fyp_chat.profiles import ProfileDirectory

SIGNAL_TYPING = "typing"
SIGNAL_RECORDING = "recording"

DEFAULT_TYPING_TIMEOUT_SECONDS = 3.0
DEFAULT_RECORDING_TIMEOUT_SECONDS = 60.0


def is_message_read(message: Message) -> bool:
    return any(reader != message.sender_id for reader in message.read_by)


class DecayScheduler:
    """One-shot timers keyed by ``(participant, signal)``.

    Arming a key that already has a timer cancels the old one, so only the
    latest signal decides when the flag clears.
    """

    def __init__(self) -> None:
        self._handles: dict[tuple[str, str], asyncio.TimerHandle] = {}

    def arm(self, key: tuple[str, str], delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._handles.pop(key, None)
            callback()

        self._handles[key] = loop.call_later(delay, fire)

    def cancel(self, key: tuple[str, str]) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_armed(self, key: tuple[str, str]) -> bool:
        return key in self._handles

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()


class PresenceTracker:
    """Derives the counterpart's presence from realtime signals."""

    def __init__(
        self,
        *,
        local_id: str,
        counterpart_id: str,
        profiles: ProfileDirectory,
        scheduler: DecayScheduler | None = None,
        typing_timeout: float = DEFAULT_TYPING_TIMEOUT_SECONDS,
        recording_timeout: float = DEFAULT_RECORDING_TIMEOUT_SECONDS,
        on_change: Callable[[PresenceState], None] | None = None,
    ) -> None:
        self._local_id = local_id
        self._counterpart_id = counterpart_id
        self._profiles = profiles
        self._scheduler = scheduler or DecayScheduler()
        self._typing_timeout = typing_timeout
        self._recording_timeout = recording_timeout
        self._on_change = on_change
        self._state = PresenceState()

    @property
    def state(self) -> PresenceState:
        return self._state

    def handle_typing(self, participant_id: str) -> None:
        if participant_id == self._local_id:
            return
        self._set(typing=True)
        self._scheduler.arm(
            (participant_id, SIGNAL_TYPING),
            self._typing_timeout,
            lambda: self._set(typing=False),
        )

    def handle_recording(self, participant_id: str, active: bool) -> None:
        if participant_id == self._local_id:
            return
        key = (participant_id, SIGNAL_RECORDING)
        if active:
            self._set(recording=True)
            self._scheduler.arm(key, self._recording_timeout, lambda: self._set(recording=False))
        else:
            self._scheduler.cancel(key)
            self._set(recording=False)

    async def handle_presence_sync(self, participant_ids: set[str]) -> None:
        was_online = self._state.online
        online = bool(participant_ids - {self._local_id})
        self._set(online=online)
        if was_online and not online:
            await self.refresh_last_seen()

    async def refresh_last_seen(self) -> datetime | None:
        try:
            last_seen = await self._profiles.last_seen(self._counterpart_id)
        except BackendError as ex:
            logger.warning(f"Could not fetch last seen for {self._counterpart_id}: {ex}")
            return self._state.last_seen_at
        if last_seen is not None:
            self._set(last_seen_at=last_seen)
        return last_seen

    def close(self) -> None:
        self._scheduler.cancel_all()

    def _set(self, **changes) -> None:
        updated = replace(self._state, **changes)
        if updated == self._state:
            return
        self._state = updated
        if self._on_change is not None:
            self._on_change(updated)
