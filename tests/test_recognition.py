"""
Tests for the Deepgram recognition bridge.
"""
import asyncio
import json
from types import SimpleNamespace

import aiohttp
import pytest

from fakes import wait_for
from voice_agent.errors import ErrorCategory, RecognitionError
from voice_agent.recognition import (
    AudioFormat,
    DeepgramClient,
    RecognitionEventKind,
    parse_deepgram_message,
)


def _results(transcript: str, is_final: bool) -> dict:
    return {
        "type": "Results",
        "is_final": is_final,
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.98}]},
    }


class TestParseDeepgramMessage:

    def test_final_transcript(self):
        event = parse_deepgram_message(_results("What does today hold for me?", True))
        assert event.kind == RecognitionEventKind.FINAL
        assert event.text == "What does today hold for me?"

    def test_interim_transcript(self):
        event = parse_deepgram_message(_results("What does", False))
        assert event.kind == RecognitionEventKind.PARTIAL

    def test_blank_transcripts_are_ignored(self):
        assert parse_deepgram_message(_results("", True)) is None
        assert parse_deepgram_message(_results("   ", False)) is None
        assert parse_deepgram_message({"type": "Results", "channel": {"alternatives": []}}) is None

    def test_utterance_end(self):
        event = parse_deepgram_message({"type": "UtteranceEnd", "last_word_end": 2.1})
        assert event.kind == RecognitionEventKind.UTTERANCE_END

    def test_metadata_and_speech_started_are_ignored(self):
        assert parse_deepgram_message({"type": "Metadata", "request_id": "r1"}) is None
        assert parse_deepgram_message({"type": "SpeechStarted"}) is None

    def test_error_message(self):
        event = parse_deepgram_message({"type": "Error", "description": "bad audio"})
        assert event.kind == RecognitionEventKind.ERROR
        assert isinstance(event.error, RecognitionError)


def test_query_params_are_strings():
    client = DeepgramClient(api_key="dg", utterance_end_ms=1500)
    params = client.query_params(AudioFormat())

    assert params == {
        "model": "nova-2",
        "language": "en",
        "encoding": "linear16",
        "sample_rate": "16000",
        "channels": "1",
        "interim_results": "true",
        "utterance_end_ms": "1500",
        "vad_events": "true",
        "punctuate": "true",
        "smart_format": "true",
    }


class FakeWebSocket:
    """Minimal aiohttp ClientWebSocketResponse stand-in."""

    def __init__(self):
        self.incoming: "asyncio.Queue" = asyncio.Queue()
        self.sent_bytes = []
        self.sent_text = []
        self.closed = False
        self.close_code = None
        self.send_error = None

    def push_json(self, data: dict) -> None:
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(data)))

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self.incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg

    async def send_bytes(self, data: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent_bytes.append(data)

    async def send_str(self, data: str) -> None:
        self.sent_text.append(data)

    async def close(self) -> None:
        self.closed = True
        self.close_code = 1000
        self.incoming.put_nowait(None)

    def exception(self):
        return None


class FakeDeepgramClient(DeepgramClient):
    def __init__(self, ws=None, error=None):
        super().__init__(api_key="dg_test")
        self.ws = ws
        self.error = error
        self.connected_with = None

    async def connect(self, audio_format):
        self.connected_with = audio_format
        if self.error is not None:
            raise self.error
        return self.ws


class TestDeepgramBridge:

    @pytest.mark.asyncio
    async def test_close_before_open_is_safe(self):
        bridge = DeepgramClient(api_key="dg").create_bridge("sess_1")
        await bridge.close()
        await bridge.close()
        assert bridge.send(b"\x00\x00") is False

    @pytest.mark.asyncio
    async def test_open_failure_is_init_failed(self):
        client = FakeDeepgramClient(error=aiohttp.ClientConnectionError("refused"))
        bridge = client.create_bridge("sess_1")

        with pytest.raises(RecognitionError) as exc_info:
            await bridge.open(AudioFormat())
        assert exc_info.value.category == ErrorCategory.RECOGNITION_INIT_FAILED

    @pytest.mark.asyncio
    async def test_frames_are_forwarded_and_events_emitted(self):
        ws = FakeWebSocket()
        client = FakeDeepgramClient(ws=ws)
        bridge = client.create_bridge("sess_1")
        await bridge.open(AudioFormat())
        assert client.connected_with == AudioFormat(encoding="linear16", sample_rate=16000, channels=1)

        assert bridge.send(b"\x01\x02") is True
        await wait_for(lambda: ws.sent_bytes == [b"\x01\x02"])

        ws.push_json({"type": "Metadata", "request_id": "r1"})
        ws.push_json(_results("hello", False))
        ws.push_json(_results("hello there", True))
        ws.push_json({"type": "UtteranceEnd"})

        kinds = [(await bridge.events.get()).kind for _ in range(3)]
        assert kinds == [
            RecognitionEventKind.PARTIAL,
            RecognitionEventKind.FINAL,
            RecognitionEventKind.UTTERANCE_END,
        ]

        await bridge.close()

    @pytest.mark.asyncio
    async def test_close_sends_close_stream_once(self):
        ws = FakeWebSocket()
        bridge = FakeDeepgramClient(ws=ws).create_bridge("sess_1")
        await bridge.open(AudioFormat())

        await bridge.close()
        await bridge.close()

        assert ws.sent_text == [json.dumps({"type": "CloseStream"})]
        assert ws.closed is True
        assert bridge.send(b"\x00") is False

    @pytest.mark.asyncio
    async def test_upstream_close_emits_closed(self):
        ws = FakeWebSocket()
        bridge = FakeDeepgramClient(ws=ws).create_bridge("sess_1")
        await bridge.open(AudioFormat())

        ws.incoming.put_nowait(None)
        event = await asyncio.wait_for(bridge.events.get(), timeout=1.0)
        assert event.kind == RecognitionEventKind.CLOSED
        assert bridge.is_open is False
        assert bridge.send(b"\x00") is False

        await bridge.close()

    @pytest.mark.asyncio
    async def test_frames_are_refused_once_socket_is_closed(self):
        ws = FakeWebSocket()
        bridge = FakeDeepgramClient(ws=ws).create_bridge("sess_1")
        await bridge.open(AudioFormat())
        assert bridge.is_open is True

        ws.closed = True

        assert bridge.is_open is False
        assert bridge.send(b"\x00") is False
        assert ws.sent_bytes == []

        await bridge.close()

    @pytest.mark.asyncio
    async def test_send_failure_emits_error(self):
        ws = FakeWebSocket()
        ws.send_error = ConnectionResetError("reset by peer")
        bridge = FakeDeepgramClient(ws=ws).create_bridge("sess_1")
        await bridge.open(AudioFormat())

        bridge.send(b"\x00")
        event = await asyncio.wait_for(bridge.events.get(), timeout=1.0)
        assert event.kind == RecognitionEventKind.ERROR
        assert isinstance(event.error, ConnectionResetError)
        assert bridge.send(b"\x00") is False

        await bridge.close()
