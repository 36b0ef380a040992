import asyncio
import unittest

from fyp_chat.channel_binder import RealtimeChannelBinder, topic_for

from tests.fakes import STUDENT, SUPERVISOR, FakeGateway, settle


def make_binder(gateway: FakeGateway) -> RealtimeChannelBinder:
    return RealtimeChannelBinder(
        gateway,
        table="fyp_chat",
        session_column="fyp_id",
        session_id="p1",
        local_participant_id=STUDENT.id,
    )


class RealtimeChannelBinderTests(unittest.TestCase):
    def test_subscribes_to_session_scoped_topic(self) -> None:
        gateway = FakeGateway()

        async def scenario() -> None:
            binder = make_binder(gateway)
            await binder.subscribe()
            await binder.track_presence()
            await binder.close()

        asyncio.run(scenario())

        channel = gateway.channels[topic_for("fyp_chat", "p1")]
        self.assertEqual([("fyp_chat", "fyp_id=eq.p1")], [(t, f) for t, f, _ in channel.row_handlers])
        self.assertEqual(STUDENT.id, channel.tracked[0]["user_id"])
        self.assertIn("online_at", channel.tracked[0])
        self.assertTrue(channel.unsubscribed)

    def test_own_inserts_are_suppressed(self) -> None:
        gateway = FakeGateway()
        received: list[str] = []

        async def scenario() -> None:
            binder = make_binder(gateway)
            binder.on_message_inserted(lambda row: received.append(row["id"]))
            await binder.subscribe()
            channel = gateway.channels["fyp_chat:p1"]
            channel.emit_row("INSERT", {"id": "m1", "user_id": STUDENT.id})
            channel.emit_row("INSERT", {"id": "m2", "user_id": SUPERVISOR.id})
            await settle()
            await binder.close()

        asyncio.run(scenario())

        self.assertEqual(["m2"], received)

    def test_updates_are_delivered_for_every_sender(self) -> None:
        gateway = FakeGateway()
        updated: list[str] = []

        async def scenario() -> None:
            binder = make_binder(gateway)
            binder.on_message_updated(lambda row: updated.append(row["id"]))
            await binder.subscribe()
            channel = gateway.channels["fyp_chat:p1"]
            channel.emit_row("UPDATE", {"id": "m1", "user_id": STUDENT.id})
            channel.emit_row("DELETE", {"id": "m2", "user_id": SUPERVISOR.id})
            await binder.close()

        asyncio.run(scenario())

        self.assertEqual(["m1"], updated)

    def test_ephemeral_signals_map_to_handlers(self) -> None:
        gateway = FakeGateway()
        typing: list[str] = []
        recording: list[tuple[str, bool]] = []

        async def scenario() -> None:
            binder = make_binder(gateway)
            binder.on_typing(typing.append)
            binder.on_recording(lambda sender, active: recording.append((sender, active)))
            await binder.subscribe()
            channel = gateway.channels["fyp_chat:p1"]
            channel.emit_broadcast("typing", {"user_id": SUPERVISOR.id})
            channel.emit_broadcast("typing", {"user_id": STUDENT.id})
            channel.emit_broadcast("recording", {"user_id": SUPERVISOR.id})
            channel.emit_broadcast("stopped_recording", {"user_id": SUPERVISOR.id})
            await binder.close()

        asyncio.run(scenario())

        self.assertEqual([SUPERVISOR.id], typing)
        self.assertEqual([(SUPERVISOR.id, True), (SUPERVISOR.id, False)], recording)

    def test_presence_sync_reports_tracked_participants(self) -> None:
        gateway = FakeGateway()
        seen: list[set[str]] = []

        async def scenario() -> None:
            binder = make_binder(gateway)
            binder.on_presence_sync(seen.append)
            await binder.subscribe()
            gateway.channels["fyp_chat:p1"].sync_presence(STUDENT.id, SUPERVISOR.id)
            await binder.close()

        asyncio.run(scenario())

        self.assertEqual([{STUDENT.id, SUPERVISOR.id}], seen)

    def test_no_handler_runs_after_close(self) -> None:
        gateway = FakeGateway()
        received: list[str] = []

        async def scenario() -> None:
            gate = asyncio.Event()

            async def slow_handler(row: dict) -> None:
                await gate.wait()
                received.append(row["id"])

            binder = make_binder(gateway)
            binder.on_message_inserted(slow_handler)
            await binder.subscribe()
            channel = gateway.channels["fyp_chat:p1"]
            channel.emit_row("INSERT", {"id": "m1", "user_id": SUPERVISOR.id})
            await settle()
            await binder.close()
            gate.set()
            channel.emit_row("INSERT", {"id": "m2", "user_id": SUPERVISOR.id})
            channel.emit_broadcast("typing", {"user_id": SUPERVISOR.id})
            await settle()

        asyncio.run(scenario())

        self.assertEqual([], received)

    def test_signals_are_not_sent_before_subscribe(self) -> None:
        gateway = FakeGateway()

        async def scenario() -> None:
            binder = make_binder(gateway)
            await binder.send_typing()
            await binder.subscribe()
            await binder.send_typing()
            await binder.send_recording(True)
            await binder.send_recording(False)
            await binder.close()
            await binder.send_typing()

        asyncio.run(scenario())

        channel = gateway.channels["fyp_chat:p1"]
        self.assertEqual(["typing", "recording", "stopped_recording"], [event for event, _ in channel.sent])
        self.assertTrue(all(payload == {"user_id": STUDENT.id} for _, payload in channel.sent))


if __name__ == "__main__":
    unittest.main()
