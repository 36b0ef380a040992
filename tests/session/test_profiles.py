import asyncio
import unittest

from fyp_chat.errors import ParticipantResolutionFailed
from fyp_chat.models import UNKNOWN_SENDER
from fyp_chat.profiles import ParticipantResolver, ProfileDirectory

from tests.fakes import STUDENT, SUPERVISOR, FakeStore


def project_store(supervisor_id: str | None = SUPERVISOR.id) -> FakeStore:
    backend = FakeStore()
    backend.add_profile(STUDENT)
    backend.add_profile(SUPERVISOR)
    backend.table("final_year_projects").rows.append(
        {"id": "p1", "student_id": STUDENT.id, "supervisor_id": supervisor_id}
    )
    return backend


def make_resolver(backend: FakeStore) -> ParticipantResolver:
    return ParticipantResolver(backend, ProfileDirectory(backend))


class ParticipantResolverTests(unittest.TestCase):
    def test_student_sees_supervisor_as_counterpart(self) -> None:
        backend = project_store()

        participants = asyncio.run(make_resolver(backend).resolve("p1", STUDENT.id))

        self.assertEqual(STUDENT.id, participants.local.id)
        self.assertEqual("Dr Grace Supervisor", participants.counterpart.name)

    def test_supervisor_sees_student_as_counterpart(self) -> None:
        backend = project_store()

        participants = asyncio.run(make_resolver(backend).resolve("p1", SUPERVISOR.id))

        self.assertEqual(STUDENT.id, participants.counterpart.id)
        self.assertTrue(participants.is_local(SUPERVISOR.id))

    def test_outsider_is_rejected(self) -> None:
        backend = project_store()

        with self.assertRaises(ParticipantResolutionFailed):
            asyncio.run(make_resolver(backend).resolve("p1", "someone-else"))

    def test_missing_counterpart_is_rejected(self) -> None:
        backend = project_store(supervisor_id=None)

        with self.assertRaises(ParticipantResolutionFailed):
            asyncio.run(make_resolver(backend).resolve("p1", STUDENT.id))

    def test_transient_lookup_failure_is_retried(self) -> None:
        backend = project_store()
        backend.table("final_year_projects").fail_select = 1

        participants = asyncio.run(make_resolver(backend).resolve("p1", STUDENT.id))

        self.assertEqual(SUPERVISOR.id, participants.counterpart.id)
        self.assertEqual(2, backend.table("final_year_projects").select_calls)

    def test_profile_failure_falls_back_to_bare_ids(self) -> None:
        backend = project_store()
        backend.table("profiles").fail_select = 1

        participants = asyncio.run(make_resolver(backend).resolve("p1", STUDENT.id))

        self.assertEqual(UNKNOWN_SENDER, participants.counterpart.name)
        self.assertEqual(SUPERVISOR.id, participants.counterpart.id)


if __name__ == "__main__":
    unittest.main()
