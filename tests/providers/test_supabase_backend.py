import asyncio
import unittest
from types import SimpleNamespace

import httpx

from fyp_chat.backend import RowChange
from fyp_chat.errors import BackendError
from fyp_chat.providers.supabase_backend import (
    SupabaseRealtimeChannel,
    SupabaseTable,
    _broadcast_body,
    _row_change,
)


class _RecordingChannel:
    def __init__(self):
        self.postgres: list[dict] = []
        self.broadcast: dict = {}

    def on_postgres_changes(self, event, *, schema, table, filter, callback):
        self.postgres.append({"event": event, "schema": schema, "table": table, "filter": filter, "callback": callback})
        return self

    def on_broadcast(self, event, callback):
        self.broadcast[event] = callback
        return self


class _Query:
    def __init__(self, calls: list, fail: Exception | None = None):
        self._calls = calls
        self._fail = fail

    def __getattr__(self, name):
        def step(*args, **kwargs):
            self._calls.append((name, args, kwargs))
            return self

        return step

    async def execute(self):
        if self._fail is not None:
            raise self._fail
        return SimpleNamespace(data=[{"id": 1}])


class _Client:
    def __init__(self, fail: Exception | None = None):
        self.calls: list = []
        self.realtime = _RecordingChannel()
        self._fail = fail

    def table(self, name):
        self.calls.append(("table", (name,), {}))
        return _Query(self.calls, self._fail)

    def channel(self, topic):
        self.topic = topic
        return self.realtime


class PayloadNormalizationTests(unittest.TestCase):
    def test_row_change_accepts_wrapped_and_flat_payloads(self) -> None:
        wrapped = _row_change({"data": {"type": "INSERT", "record": {"id": 1}}})
        flat = _row_change({"eventType": "UPDATE", "new": {"id": 2}, "old": {"id": 2}})

        self.assertEqual(RowChange(event_type="INSERT", new={"id": 1}), wrapped)
        self.assertEqual("UPDATE", flat.event_type)
        self.assertEqual({"id": 2}, flat.new)

    def test_broadcast_body_unwraps_payload(self) -> None:
        self.assertEqual({"user_id": "u1"}, _broadcast_body({"event": "typing", "payload": {"user_id": "u1"}}))
        self.assertEqual({"user_id": "u1"}, _broadcast_body({"user_id": "u1"}))


class SupabaseAdapterTests(unittest.TestCase):
    def test_select_builds_filtered_ordered_query(self) -> None:
        client = _Client()
        table = SupabaseTable(client, "fyp_chat")

        rows = asyncio.run(table.select("*", filters={"fyp_id": "p1"}, order_by="created_at", limit=5))

        self.assertEqual([{"id": 1}], rows)
        names = [name for name, _, _ in client.calls]
        self.assertEqual(["table", "select", "eq", "order", "limit"], names)
        self.assertEqual({"desc": False}, client.calls[3][2])

    def test_transport_errors_become_backend_errors(self) -> None:
        client = _Client(fail=httpx.ConnectError("down"))
        table = SupabaseTable(client, "fyp_chat")

        with self.assertRaises(BackendError):
            asyncio.run(table.insert({"message": "hi"}))

    def test_row_changes_are_normalized_before_reaching_callbacks(self) -> None:
        client = _Client()
        channel = SupabaseRealtimeChannel(client, "fyp_chat:p1")
        seen: list[RowChange] = []
        typing: list[dict] = []

        channel.on_row_change(table="fyp_chat", filter="fyp_id=eq.p1", callback=seen.append)
        channel.on_broadcast("typing", typing.append)
        registered = client.realtime.postgres[0]
        registered["callback"]({"data": {"type": "INSERT", "record": {"id": 7, "user_id": "u2"}}})
        client.realtime.broadcast["typing"]({"payload": {"user_id": "u2"}})

        self.assertEqual(("*", "public", "fyp_id=eq.p1"), (registered["event"], registered["schema"], registered["filter"]))
        self.assertEqual("fyp_chat:p1", client.topic)
        self.assertEqual([{"id": 7, "user_id": "u2"}], [c.new for c in seen])
        self.assertEqual([{"user_id": "u2"}], typing)


if __name__ == "__main__":
    unittest.main()
