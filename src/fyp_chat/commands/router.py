from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_history: Callable[[], Awaitable[None]],
        on_status: Callable[[], Awaitable[None]],
        on_record: Callable[[], Awaitable[None]],
        on_stop: Callable[[], Awaitable[None]],
        on_cancel: Callable[[], Awaitable[None]],
        on_play: Callable[[str], Awaitable[None]],
        on_reload: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_history = on_history
        self._on_status = on_status
        self._on_record = on_record
        self._on_stop = on_stop
        self._on_cancel = on_cancel
        self._on_play = on_play
        self._on_reload = on_reload
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/history":
            await self._on_history()
            return True
        if command == "/status":
            await self._on_status()
            return True
        if command == "/record":
            await self._on_record()
            return True
        if command == "/stop":
            await self._on_stop()
            return True
        if command == "/cancel":
            await self._on_cancel()
            return True
        if command == "/play":
            await self._on_play(argument.strip())
            return True
        if command == "/reload":
            await self._on_reload()
            return True

        self._on_unknown(trimmed)
        return True
