import asyncio
import io
import unittest
import wave
from dataclasses import replace
from datetime import timedelta

import httpx

from fyp_chat.errors import EmptyRecording, MessageInsertFailed, MicrophoneUnavailable, UploadFailed, VoiceNoteExpired
from fyp_chat.models import DeliveryState, Message, MessageKind
from fyp_chat.voice_notes import (
    CapturedAudio,
    RecorderState,
    VoiceNoteRecorder,
    VoiceNoteUploader,
    fetch_voice_note,
    is_voice_note_expired,
    playable_reference,
)

from tests.fakes import STUDENT, T0, FakeAudioInput, FakeStorage, seeded_store


def audio_message(body: str = "https://storage.test/chat-voice-notes/p1/a.wav") -> Message:
    return Message(
        key="m1",
        id="m1",
        session_id="p1",
        sender_id=STUDENT.id,
        kind=MessageKind.AUDIO,
        body=body,
        created_at=T0,
        metadata={"duration": 3},
    )


class VoiceNoteExpiryTests(unittest.TestCase):
    def test_expiry_boundary(self) -> None:
        self.assertFalse(is_voice_note_expired(T0, T0 + timedelta(hours=23, minutes=59)))
        self.assertTrue(is_voice_note_expired(T0, T0 + timedelta(hours=24)))
        self.assertTrue(is_voice_note_expired(T0, T0 + timedelta(hours=24, seconds=1)))

    def test_expired_notes_have_no_playable_reference(self) -> None:
        message = audio_message()

        self.assertEqual(message.body, playable_reference(message, T0 + timedelta(hours=23, minutes=59)))
        self.assertIsNone(playable_reference(message, T0 + timedelta(hours=24, seconds=1)))

    def test_fetch_refuses_expired_notes_without_network(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=b"RIFF")

        async def scenario() -> None:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                with self.assertRaises(VoiceNoteExpired):
                    await fetch_voice_note(audio_message(), client=client, now=T0 + timedelta(days=2))
                data = await fetch_voice_note(audio_message(), client=client, now=T0 + timedelta(hours=1))
                self.assertEqual(b"RIFF", data)

        asyncio.run(scenario())

        self.assertEqual(1, len(requests))


class VoiceNoteRecorderTests(unittest.TestCase):
    def test_stop_returns_wav_with_elapsed_seconds(self) -> None:
        changes: list[bool] = []
        audio_input = FakeAudioInput()

        async def on_change(active: bool) -> None:
            changes.append(active)

        async def scenario() -> CapturedAudio | None:
            recorder = VoiceNoteRecorder(lambda: audio_input, on_recording_changed=on_change, tick_seconds=0.02)
            await recorder.start()
            self.assertEqual(RecorderState.RECORDING, recorder.state)
            await asyncio.sleep(0.07)
            captured = await recorder.stop()
            self.assertEqual(RecorderState.SENDING, recorder.state)
            recorder.finish_sending()
            self.assertEqual(RecorderState.IDLE, recorder.state)
            return captured

        captured = asyncio.run(scenario())

        assert captured is not None
        self.assertGreaterEqual(captured.duration_seconds, 2)
        self.assertEqual("audio/wav", captured.content_type)
        with wave.open(io.BytesIO(captured.data), "rb") as wf:
            self.assertEqual(16000, wf.getframerate())
            self.assertEqual(1600, wf.getnframes())
        self.assertEqual([True, False], changes)
        self.assertTrue(audio_input.closed)

    def test_empty_capture_raises_and_returns_to_idle(self) -> None:
        audio_input = FakeAudioInput(pcm=b"")

        async def on_change(active: bool) -> None:
            pass

        async def scenario() -> VoiceNoteRecorder:
            recorder = VoiceNoteRecorder(lambda: audio_input, on_recording_changed=on_change)
            await recorder.start()
            with self.assertRaises(EmptyRecording):
                await recorder.stop()
            return recorder

        recorder = asyncio.run(scenario())

        self.assertEqual(RecorderState.IDLE, recorder.state)
        self.assertTrue(audio_input.closed)

    def test_microphone_failure_leaves_recorder_idle(self) -> None:
        changes: list[bool] = []

        async def on_change(active: bool) -> None:
            changes.append(active)

        async def scenario() -> VoiceNoteRecorder:
            recorder = VoiceNoteRecorder(lambda: FakeAudioInput(fail_open=True), on_recording_changed=on_change)
            with self.assertRaises(MicrophoneUnavailable):
                await recorder.start()
            return recorder

        recorder = asyncio.run(scenario())

        self.assertEqual(RecorderState.IDLE, recorder.state)
        self.assertEqual([], changes)

    def test_cancel_releases_the_device_and_discards_audio(self) -> None:
        changes: list[bool] = []
        audio_input = FakeAudioInput()

        async def on_change(active: bool) -> None:
            changes.append(active)

        async def scenario() -> VoiceNoteRecorder:
            recorder = VoiceNoteRecorder(lambda: audio_input, on_recording_changed=on_change)
            await recorder.start()
            await recorder.cancel()
            self.assertIsNone(await recorder.stop())
            return recorder

        recorder = asyncio.run(scenario())

        self.assertEqual(RecorderState.IDLE, recorder.state)
        self.assertTrue(audio_input.closed)
        self.assertEqual(b"", audio_input.drain())
        self.assertEqual([True, False], changes)


class VoiceNoteUploaderTests(unittest.TestCase):
    def test_publish_uploads_then_records_audio_message(self) -> None:
        backend, store = seeded_store()
        storage = FakeStorage()
        uploader = VoiceNoteUploader(storage, store, clock=lambda: T0)
        audio = CapturedAudio(data=b"RIFFdata", duration_seconds=7)

        message = asyncio.run(uploader.publish("p1", STUDENT.id, audio))

        path = f"p1/{STUDENT.id}/{int(T0.timestamp() * 1000)}.wav"
        self.assertEqual((b"RIFFdata", "audio/wav"), storage.blobs[path])
        self.assertEqual(f"https://storage.test/chat-voice-notes/{path}", message.body)
        self.assertEqual(MessageKind.AUDIO, message.kind)
        self.assertEqual(7, message.duration_seconds)

    def test_upload_failure_records_nothing(self) -> None:
        backend, store = seeded_store()
        storage = FakeStorage()
        storage.fail_upload = True
        uploader = VoiceNoteUploader(storage, store)

        with self.assertRaises(UploadFailed):
            asyncio.run(uploader.publish("p1", STUDENT.id, CapturedAudio(data=b"x", duration_seconds=1)))
        self.assertEqual([], backend.table("fyp_chat").rows)

    def test_insert_failure_after_upload_is_reported(self) -> None:
        backend, store = seeded_store()
        backend.table("fyp_chat").fail_insert = 1
        storage = FakeStorage()
        uploader = VoiceNoteUploader(storage, store)

        with self.assertRaises(MessageInsertFailed):
            asyncio.run(uploader.publish("p1", STUDENT.id, CapturedAudio(data=b"x", duration_seconds=1)))
        self.assertEqual(1, len(storage.blobs))

    def test_pending_note_plays_from_its_local_preview(self) -> None:
        message = replace(
            audio_message("file:///tmp/preview.wav"),
            id=None,
            created_at=T0 - timedelta(days=3),
            state=DeliveryState.PENDING,
        )

        self.assertEqual("file:///tmp/preview.wav", playable_reference(message, T0))


if __name__ == "__main__":
    unittest.main()
