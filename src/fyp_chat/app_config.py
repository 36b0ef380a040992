from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    supabase_url: str
    supabase_key: str
    email: str | None
    password: str | None

    def missing(self) -> list[str]:
        names = []
        if not self.supabase_url:
            names.append("SUPABASE_URL")
        if not self.supabase_key:
            names.append("SUPABASE_KEY")
        if not self.email:
            names.append("SUPABASE_EMAIL")
        if not self.password:
            names.append("SUPABASE_PASSWORD")
        return names


@dataclass
class AppConfig:
    session_id: str | None
    chat_table: str
    session_column: str
    context_table: str
    primary_column: str
    counterpart_column: str
    profiles_table: str
    voice_note_bucket: str
    typing_timeout_seconds: float
    recording_timeout_seconds: float
    heartbeat_interval_seconds: float
    voice_note_ttl_hours: float
    sample_rate: int
    input_device: str | None
    download_directory: str
    play_voice_notes: bool
    log_level: str
    log_consumers: list | None


def load_json_config(path: str | Path | None = None) -> dict:
    """Read ``config.json`` (or ``path``); a missing file means all defaults."""
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if not config_path.is_file():
        return {}
    return json.loads(config_path.read_text(encoding="utf-8"))


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        session_id=str(config.get("SessionId", "")).strip() or None,
        chat_table=str(config.get("ChatTable", "fyp_chat")),
        session_column=str(config.get("SessionColumn", "fyp_id")),
        context_table=str(config.get("ContextTable", "final_year_projects")),
        primary_column=str(config.get("PrimaryColumn", "student_id")),
        counterpart_column=str(config.get("CounterpartColumn", "supervisor_id")),
        profiles_table=str(config.get("ProfilesTable", "profiles")),
        voice_note_bucket=str(config.get("VoiceNoteBucket", "chat-voice-notes")),
        typing_timeout_seconds=float(config.get("TypingTimeoutSeconds", 3.0)),
        recording_timeout_seconds=float(config.get("RecordingTimeoutSeconds", 60.0)),
        heartbeat_interval_seconds=float(config.get("HeartbeatIntervalSeconds", 60.0)),
        voice_note_ttl_hours=float(config.get("VoiceNoteTtlHours", 24.0)),
        sample_rate=int(config.get("SampleRate", 16000)),
        input_device=str(config.get("InputDevice", "")).strip() or None,
        download_directory=str(config.get("DownloadDirectory", ".fyp_chat/voice_notes")),
        play_voice_notes=_to_bool(config.get("PlayVoiceNotes", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        supabase_url=os.environ.get("SUPABASE_URL", ""),
        supabase_key=os.environ.get("SUPABASE_KEY", ""),
        email=os.environ.get("SUPABASE_EMAIL"),
        password=os.environ.get("SUPABASE_PASSWORD"),
    )
