"""Chat error taxonomy.

Every failure in the chat core is converted into one of these at the point where
the failing operation runs, then surfaced to the user as a transient notice.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base chat exception."""

    def __init__(self, message: str, code: str) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class BackendError(ChatError):
    """A hosted service call failed (table, storage or realtime)."""

    def __init__(self, message: str = "Backend request failed") -> None:
        super().__init__(message=message, code="BACKEND_ERROR")


# --- Message store ---


class StoreUnavailable(ChatError):
    """History load or message persistence failed."""

    def __init__(self, message: str = "Failed to load messages", code: str = "STORE_UNAVAILABLE") -> None:
        super().__init__(message=message, code=code)


class MessageInsertFailed(StoreUnavailable):
    """A message row could not be inserted."""

    def __init__(self, message: str = "Failed to send message") -> None:
        super().__init__(message=message, code="MESSAGE_INSERT_FAILED")


class ParticipantResolutionFailed(ChatError):
    """The session's two participants could not be resolved."""

    def __init__(self, message: str = "Could not resolve chat participants") -> None:
        super().__init__(message=message, code="PARTICIPANT_RESOLUTION_FAILED")


# --- Voice notes ---


class MicrophoneUnavailable(ChatError):
    """The audio input device could not be acquired."""

    def __init__(self, message: str = "Could not access microphone. Please check permissions.") -> None:
        super().__init__(message=message, code="MICROPHONE_UNAVAILABLE")


class EmptyRecording(ChatError):
    """Recording stopped without capturing any audio."""

    def __init__(self) -> None:
        super().__init__(message="Recording failed: Audio empty", code="EMPTY_RECORDING")


class UploadFailed(ChatError):
    """The voice note blob could not be uploaded."""

    def __init__(self, message: str = "Failed to send voice note") -> None:
        super().__init__(message=message, code="UPLOAD_FAILED")


class VoiceNoteExpired(ChatError):
    """Playback was requested for a voice note past its visibility window."""

    def __init__(self) -> None:
        super().__init__(message="Voice note expired", code="VOICE_NOTE_EXPIRED")
