import asyncio
import unittest

from fyp_chat.heartbeat import Heartbeat
from fyp_chat.profiles import ProfileDirectory

from tests.fakes import STUDENT, T0, FakeStore


class HeartbeatTests(unittest.TestCase):
    def test_beats_immediately_and_then_periodically(self) -> None:
        backend = FakeStore()
        backend.add_profile(STUDENT)
        heartbeat = Heartbeat(ProfileDirectory(backend), STUDENT.id, interval_seconds=0.05, clock=lambda: T0)

        async def scenario() -> None:
            async with heartbeat:
                await asyncio.sleep(0.13)
            self.assertFalse(heartbeat.is_running)

        asyncio.run(scenario())

        self.assertGreaterEqual(heartbeat.beats, 2)
        self.assertEqual(T0.isoformat(), backend.table("profiles").rows[0]["last_seen"])

    def test_failed_beat_does_not_stop_the_loop(self) -> None:
        backend = FakeStore()
        backend.add_profile(STUDENT)
        backend.table("profiles").fail_update = 1
        heartbeat = Heartbeat(ProfileDirectory(backend), STUDENT.id, interval_seconds=0.03)

        async def scenario() -> None:
            await heartbeat.start()
            await asyncio.sleep(0.1)
            await heartbeat.stop()

        asyncio.run(scenario())

        self.assertGreaterEqual(backend.table("profiles").update_calls, 2)
        self.assertGreaterEqual(heartbeat.beats, 1)


if __name__ == "__main__":
    unittest.main()
