from __future__ import annotations

import asyncio

from loguru import logger

from fyp_chat.errors import BackendError
from fyp_chat.models import Clock, utc_now
from fyp_chat.profiles import ProfileDirectory

DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 60.0


class Heartbeat:
    """Keeps the local participant's ``last_seen`` fresh while a session is open.

    Beats once on start and then every ``interval_seconds`` until stopped.
    Usable as ``async with Heartbeat(...):``.
    """

    def __init__(
        self,
        profiles: ProfileDirectory,
        participant_id: str,
        *,
        interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._profiles = profiles
        self._participant_id = participant_id
        self._interval_seconds = max(0.01, interval_seconds)
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._beats = 0

    @property
    def beats(self) -> int:
        return self._beats

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def __aenter__(self) -> Heartbeat:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def beat(self) -> None:
        try:
            await self._profiles.touch_last_seen(self._participant_id, self._clock())
        except BackendError as ex:
            logger.warning(f"Heartbeat for {self._participant_id} failed: {ex}")
            return
        self._beats += 1

    async def _run(self) -> None:
        while True:
            await self.beat()
            await asyncio.sleep(self._interval_seconds)
