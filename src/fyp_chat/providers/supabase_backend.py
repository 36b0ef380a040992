from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from postgrest.exceptions import APIError
from storage3.utils import StorageException
from supabase import AsyncClient, acreate_client

from fyp_chat.backend import BroadcastCallback, PresenceSyncCallback, RowChange, RowChangeCallback
from fyp_chat.errors import BackendError


async def create_supabase_client(url: str, key: str) -> AsyncClient:
    return await acreate_client(url, key)


async def sign_in(client: AsyncClient, email: str, password: str) -> str:
    """Sign in with email/password and return the authenticated user id."""
    try:
        response = await client.auth.sign_in_with_password({"email": email, "password": password})
    except Exception as ex:
        raise BackendError(f"Sign-in failed: {ex}") from ex
    if response.user is None:
        raise BackendError("Sign-in returned no user")
    return str(response.user.id)


class SupabaseTable:
    def __init__(self, client: AsyncClient, name: str):
        self._client = client
        self._name = name

    async def select(
        self,
        columns: str = "*",
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        query = self._client.table(self._name).select(columns)
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=not ascending)
        if limit is not None:
            query = query.limit(limit)
        try:
            response = await query.execute()
        except (APIError, httpx.HTTPError) as ex:
            raise BackendError(f"select from {self._name} failed: {ex}") from ex
        return list(response.data or [])

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.table(self._name).insert(row).execute()
        except (APIError, httpx.HTTPError) as ex:
            raise BackendError(f"insert into {self._name} failed: {ex}") from ex
        data = response.data or []
        if not data:
            raise BackendError(f"insert into {self._name} returned no row")
        return dict(data[0])

    async def update(self, values: dict[str, Any], *, filters: dict[str, Any]) -> list[dict[str, Any]]:
        query = self._client.table(self._name).update(values)
        for column, value in filters.items():
            query = query.eq(column, value)
        try:
            response = await query.execute()
        except (APIError, httpx.HTTPError) as ex:
            raise BackendError(f"update of {self._name} failed: {ex}") from ex
        return list(response.data or [])


class SupabaseStore:
    def __init__(self, client: AsyncClient):
        self._client = client

    def table(self, name: str) -> SupabaseTable:
        return SupabaseTable(self._client, name)


class SupabaseStorage:
    def __init__(self, client: AsyncClient, bucket: str = "chat-voice-notes"):
        self._client = client
        self._bucket = bucket

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        try:
            await self._client.storage.from_(self._bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type},
            )
        except (StorageException, httpx.HTTPError) as ex:
            raise BackendError(f"upload of {path} to {self._bucket} failed: {ex}") from ex

    async def public_url(self, path: str) -> str:
        try:
            return await self._client.storage.from_(self._bucket).get_public_url(path)
        except (StorageException, httpx.HTTPError) as ex:
            raise BackendError(f"public url for {path} failed: {ex}") from ex


def _row_change(payload: dict[str, Any]) -> RowChange:
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    event_type = str(data.get("type") or data.get("eventType") or "")
    new = data.get("record") or data.get("new") or {}
    old = data.get("old_record") or data.get("old") or {}
    return RowChange(event_type=event_type, new=dict(new), old=dict(old))


def _broadcast_body(message: dict[str, Any]) -> dict[str, Any]:
    inner = message.get("payload") if isinstance(message, dict) else None
    if isinstance(inner, dict):
        return inner
    return message if isinstance(message, dict) else {}


class SupabaseRealtimeChannel:
    def __init__(self, client: AsyncClient, topic: str):
        self._client = client
        self._topic = topic
        self._channel = client.channel(topic)

    def on_row_change(self, *, table: str, filter: str, callback: RowChangeCallback) -> None:
        self._channel.on_postgres_changes(
            "*",
            schema="public",
            table=table,
            filter=filter,
            callback=lambda payload: callback(_row_change(payload)),
        )

    def on_broadcast(self, event: str, callback: BroadcastCallback) -> None:
        self._channel.on_broadcast(event, lambda message: callback(_broadcast_body(message)))

    def on_presence_sync(self, callback: PresenceSyncCallback) -> None:
        self._channel.on_presence_sync(callback)

    def presence_state(self) -> dict[str, list[dict[str, Any]]]:
        return self._channel.presence_state()

    async def subscribe(self) -> None:
        def on_status(status, err=None) -> None:
            logger.debug(f"Realtime {self._topic} status: {status}")
            if err is not None:
                logger.warning(f"Realtime {self._topic} error: {err}")

        try:
            await self._channel.subscribe(on_status)
        except Exception as ex:
            raise BackendError(f"subscribe to {self._topic} failed: {ex}") from ex

    async def track(self, payload: dict[str, Any]) -> None:
        try:
            await self._channel.track(payload)
        except Exception as ex:
            raise BackendError(f"presence track on {self._topic} failed: {ex}") from ex

    async def send_broadcast(self, event: str, payload: dict[str, Any]) -> None:
        await self._channel.send_broadcast(event, payload)

    async def unsubscribe(self) -> None:
        await self._client.remove_channel(self._channel)


class SupabaseRealtimeGateway:
    def __init__(self, client: AsyncClient):
        self._client = client

    def channel(self, topic: str) -> SupabaseRealtimeChannel:
        return SupabaseRealtimeChannel(self._client, topic)
