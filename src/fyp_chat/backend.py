from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class RowChange:
    event_type: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)


RowChangeCallback = Callable[[RowChange], Awaitable[None] | None]
BroadcastCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
PresenceSyncCallback = Callable[[], Awaitable[None] | None]


@runtime_checkable
class Table(Protocol):
    async def select(
        self,
        columns: str = "*",
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, values: dict[str, Any], *, filters: dict[str, Any]) -> list[dict[str, Any]]: ...


@runtime_checkable
class RelationalStore(Protocol):
    def table(self, name: str) -> Table: ...


@runtime_checkable
class ObjectStorage(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    async def public_url(self, path: str) -> str: ...


@runtime_checkable
class RealtimeChannel(Protocol):
    def on_row_change(self, *, table: str, filter: str, callback: RowChangeCallback) -> None: ...

    def on_broadcast(self, event: str, callback: BroadcastCallback) -> None: ...

    def on_presence_sync(self, callback: PresenceSyncCallback) -> None: ...

    def presence_state(self) -> dict[str, list[dict[str, Any]]]: ...

    async def subscribe(self) -> None: ...

    async def track(self, payload: dict[str, Any]) -> None: ...

    async def send_broadcast(self, event: str, payload: dict[str, Any]) -> None: ...

    async def unsubscribe(self) -> None: ...


@runtime_checkable
class RealtimeGateway(Protocol):
    def channel(self, topic: str) -> RealtimeChannel: ...
