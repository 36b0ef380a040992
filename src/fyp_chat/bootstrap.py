from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from supabase import AsyncClient

from fyp_chat.app_config import AppConfig, RuntimeEnv
from fyp_chat.logging_config import setup_logging
from fyp_chat.message_store import MessageStore
from fyp_chat.models import Message, Notice, PresenceState
from fyp_chat.profiles import ParticipantResolver, ProfileDirectory
from fyp_chat.providers.supabase_backend import (
    SupabaseRealtimeGateway,
    SupabaseStorage,
    SupabaseStore,
    create_supabase_client,
    sign_in,
)
from fyp_chat.session import ChatSession, SessionOptions
from fyp_chat.sound_device import SoundDeviceAudioInput


@dataclass
class AppRuntime:
    client: AsyncClient
    session: ChatSession
    log_descriptions: list[str]


def session_options(app: AppConfig) -> SessionOptions:
    return SessionOptions(
        typing_timeout_seconds=app.typing_timeout_seconds,
        recording_timeout_seconds=app.recording_timeout_seconds,
        heartbeat_interval_seconds=app.heartbeat_interval_seconds,
        voice_note_ttl=timedelta(hours=app.voice_note_ttl_hours),
    )


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    on_notice: Callable[[Notice], None] | None = None,
    on_presence_change: Callable[[PresenceState], None] | None = None,
    on_timeline_change: Callable[[tuple[Message, ...]], None] | None = None,
) -> AppRuntime:
    if not app.session_id:
        raise ValueError("SessionId must be set in config.json")
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers, session_id=app.session_id)

    client = await create_supabase_client(env.supabase_url, env.supabase_key)
    user_id = await sign_in(client, env.email or "", env.password or "")

    store = SupabaseStore(client)
    profiles = ProfileDirectory(store, table=app.profiles_table)
    resolver = ParticipantResolver(
        store,
        profiles,
        context_table=app.context_table,
        primary_column=app.primary_column,
        counterpart_column=app.counterpart_column,
    )
    participants = await resolver.resolve(app.session_id, user_id)

    session = ChatSession(
        session_id=app.session_id,
        participants=participants,
        store=MessageStore(store, table=app.chat_table, session_column=app.session_column),
        gateway=SupabaseRealtimeGateway(client),
        storage=SupabaseStorage(client, bucket=app.voice_note_bucket),
        profiles=profiles,
        audio_input_factory=lambda: SoundDeviceAudioInput(sample_rate=app.sample_rate, device=app.input_device),
        options=session_options(app),
        on_notice=on_notice,
        on_presence_change=on_presence_change,
        on_timeline_change=on_timeline_change,
    )
    return AppRuntime(client=client, session=session, log_descriptions=log_descriptions)
