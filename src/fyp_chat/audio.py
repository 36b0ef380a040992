from __future__ import annotations

import io
import wave
from typing import Protocol, runtime_checkable

WAV_CONTENT_TYPE = "audio/wav"
WAV_EXTENSION = "wav"


@runtime_checkable
class AudioInput(Protocol):
    @property
    def sample_rate(self) -> int: ...

    @property
    def channels(self) -> int: ...

    @property
    def sample_width(self) -> int: ...

    def open(self) -> None: ...

    def drain(self) -> bytes: ...

    def close(self) -> None: ...


def encode_wav(pcm: bytes, *, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()
