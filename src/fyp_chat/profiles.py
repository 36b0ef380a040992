from __future__ import annotations

from datetime import datetime

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fyp_chat.backend import RelationalStore
from fyp_chat.errors import BackendError, ParticipantResolutionFailed
from fyp_chat.models import UNKNOWN_SENDER, Participant, Participants, parse_timestamp


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying participant lookup in {wait:.1f}s (attempt {attempt}/3)...")


class ProfileDirectory:
    """Display attributes and last-seen heartbeats from the ``profiles`` table."""

    def __init__(self, store: RelationalStore, *, table: str = "profiles"):
        self._table = store.table(table)

    async def get(self, participant_id: str) -> Participant:
        rows = await self._table.select("id, full_name, avatar_url", filters={"id": participant_id}, limit=1)
        if not rows:
            return Participant(id=participant_id)
        row = rows[0]
        return Participant(
            id=participant_id,
            name=row.get("full_name") or UNKNOWN_SENDER,
            avatar_url=row.get("avatar_url") or None,
        )

    async def last_seen(self, participant_id: str) -> datetime | None:
        rows = await self._table.select("last_seen", filters={"id": participant_id}, limit=1)
        if not rows or not rows[0].get("last_seen"):
            return None
        return parse_timestamp(rows[0]["last_seen"])

    async def touch_last_seen(self, participant_id: str, at: datetime) -> None:
        await self._table.update({"last_seen": at.isoformat()}, filters={"id": participant_id})


class ParticipantResolver:
    """Resolves the fixed participant pair from the session's context record."""

    def __init__(
        self,
        store: RelationalStore,
        profiles: ProfileDirectory,
        *,
        context_table: str = "final_year_projects",
        primary_column: str = "student_id",
        counterpart_column: str = "supervisor_id",
    ):
        self._table = store.table(context_table)
        self._profiles = profiles
        self._context_table = context_table
        self._primary_column = primary_column
        self._counterpart_column = counterpart_column

    @retry(
        retry=retry_if_exception_type(BackendError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=_on_retry,
        reraise=True,
    )
    async def _load_pair(self, session_id: str) -> tuple[str | None, str | None]:
        rows = await self._table.select(
            f"{self._primary_column}, {self._counterpart_column}",
            filters={"id": session_id},
            limit=1,
        )
        if not rows:
            return None, None
        row = rows[0]
        primary = row.get(self._primary_column)
        counterpart = row.get(self._counterpart_column)
        return (str(primary) if primary else None, str(counterpart) if counterpart else None)

    async def resolve(self, session_id: str, local_id: str) -> Participants:
        try:
            primary, counterpart = await self._load_pair(session_id)
        except BackendError as ex:
            raise ParticipantResolutionFailed() from ex

        if local_id == primary:
            other = counterpart
        elif local_id == counterpart:
            other = primary
        else:
            raise ParticipantResolutionFailed(f"User {local_id} is not a participant of {self._context_table} {session_id}")
        if not other:
            raise ParticipantResolutionFailed(f"{self._context_table} {session_id} has no counterpart assigned")

        try:
            local = await self._profiles.get(local_id)
            remote = await self._profiles.get(other)
        except BackendError as ex:
            logger.warning(f"Profile lookup failed, using bare ids: {ex}")
            local, remote = Participant(id=local_id), Participant(id=other)
        logger.info(f"Resolved participants for {session_id}: local={local.id} counterpart={remote.id}")
        return Participants(local=local, counterpart=remote)
