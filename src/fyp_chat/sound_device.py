from __future__ import annotations

import io
import threading
import wave

import sounddevice as sd
from loguru import logger

from fyp_chat.errors import MicrophoneUnavailable


class SoundDeviceAudioInput:
    """Captures 16-bit PCM from the default (or named) input device."""

    def __init__(self, *, sample_rate: int = 16000, channels: int = 1, device: str | int | None = None):
        self._sample_rate = sample_rate
        self._channels = channels
        self._device = device
        self._stream: sd.RawInputStream | None = None
        self._chunks: list[bytes] = []
        self._lock = threading.Lock()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def sample_width(self) -> int:
        return 2

    def open(self) -> None:
        if self._stream is not None:
            return
        try:
            stream = sd.RawInputStream(
                samplerate=self._sample_rate,
                blocksize=4000,
                dtype="int16",
                channels=self._channels,
                device=self._device,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as ex:
            logger.error(f"Error accessing microphone: {ex}")
            raise MicrophoneUnavailable() from ex
        self._stream = stream

    def drain(self) -> bytes:
        with self._lock:
            data = b"".join(self._chunks)
            self._chunks = []
        return data

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as ex:
            logger.warning(f"Closing input stream failed: {ex}")

    def _callback(self, indata, frames, time, status) -> None:
        if status:
            logger.debug(f"Input stream status: {status}")
        with self._lock:
            self._chunks.append(bytes(indata))


def play_wav(data: bytes, *, device: str | int | None = None) -> None:
    """Play a WAV blob on the output device. Blocks until playback finishes."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        if wf.getsampwidth() != 2:
            raise ValueError("Only 16-bit PCM voice notes can be played")
        channels = wf.getnchannels()
        rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    with sd.RawOutputStream(samplerate=rate, channels=channels, dtype="int16", device=device) as stream:
        stream.write(frames)
