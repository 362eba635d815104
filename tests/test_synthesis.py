"""
Tests for ElevenLabs streaming synthesis.
"""
import base64

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from fakes import FakeSynthesisClient
from observability.event_store import EventStore
from observability.events import Component, EventEmitter
from voice_agent.config import FALLBACK_MODEL_ID, FALLBACK_VOICE_ID
from voice_agent.errors import SynthesisError
from voice_agent.observability import SessionObserver
from voice_agent.persona import VoiceProfile, VoiceSettings
from voice_agent.synthesis import ElevenLabsClient, SynthesisBridge

PROFILE = VoiceProfile(
    name="krishna1",
    voice_id="pNInz6obpgDQGcFmaJgB",
    model_id="eleven_turbo_v2_5",
    prompt="Give the answer within two lines.",
    settings=VoiceSettings(stability=0.4),
)


class _Sink:
    def __init__(self):
        self.messages = []
        self.active = True

    async def send(self, payload):
        self.messages.append(payload)

    def is_active(self):
        return self.active


def test_build_payload():
    client = ElevenLabsClient(api_key="el")
    payload = client.build_payload("Namaste", PROFILE)
    assert payload == {
        "text": "Namaste",
        "model_id": "eleven_turbo_v2_5",
        "voice_settings": {
            "stability": 0.4,
            "similarity_boost": 0.75,
            "style": 0.0,
            "use_speaker_boost": True,
        },
    }


def test_build_payload_without_profile_uses_fallbacks():
    payload = ElevenLabsClient(api_key="el").build_payload("hi", None)
    assert payload["model_id"] == FALLBACK_MODEL_ID
    assert payload["voice_settings"]["stability"] == 0.5


class TestSynthesisBridge:

    @pytest.mark.asyncio
    async def test_chunks_are_indexed_from_one_then_completed(self):
        sink = _Sink()
        bridge = SynthesisBridge(FakeSynthesisClient([b"a", b"b", b"c"]), sink.send, sink.is_active)

        result = await bridge.synthesize("Peace be with you.", PROFILE)

        assert result.completed is True
        assert result.chunks_sent == 3
        assert [m["type"] for m in sink.messages] == ["audio_chunk"] * 3 + ["audio_complete"]
        assert [m["chunkIndex"] for m in sink.messages[:3]] == [1, 2, 3]
        assert base64.b64decode(sink.messages[1]["audio"]) == b"b"
        assert sink.messages[-1] == {"type": "audio_complete", "totalChunks": 3}

    @pytest.mark.asyncio
    async def test_stops_when_session_becomes_inactive(self):
        sink = _Sink()
        client = FakeSynthesisClient([b"a", b"b", b"c", b"d"])

        def deactivate(index):
            if index == 2:
                sink.active = False

        client.on_chunk = deactivate
        bridge = SynthesisBridge(client, sink.send, sink.is_active)

        result = await bridge.synthesize("text", PROFILE)

        assert result.completed is False
        assert result.chunks_sent == 2
        assert [m["type"] for m in sink.messages] == ["audio_chunk", "audio_chunk"]

    @pytest.mark.asyncio
    async def test_missing_profile_uses_fallback_voice(self):
        sink = _Sink()
        store = EventStore()
        observer = SessionObserver("sess_tts", emitter=EventEmitter(Component.VOICE_AGENT, store=store))
        client = FakeSynthesisClient([b"a"])
        bridge = SynthesisBridge(client, sink.send, sink.is_active, observer=observer)

        result = await bridge.synthesize("text", None, turn_id="turn_1_abc123")

        assert result.completed is True
        assert client.calls == [("text", None)]
        started = store.query(event_type="tts.started")[0]
        assert started["voice_id"] == FALLBACK_VOICE_ID
        assert started["model_id"] == FALLBACK_MODEL_ID

    @pytest.mark.asyncio
    async def test_upstream_failure_raises_synthesis_error(self):
        sink = _Sink()
        client = FakeSynthesisClient()
        client.error = RuntimeError("socket hang up")
        bridge = SynthesisBridge(client, sink.send, sink.is_active)

        with pytest.raises(SynthesisError):
            await bridge.synthesize("text", PROFILE)
        assert sink.messages == []


def _tts_app(received: list, status: int = 200) -> web.Application:
    async def handler(request: web.Request) -> web.StreamResponse:
        received.append({
            "voice_id": request.match_info["voice_id"],
            "api_key": request.headers.get("xi-api-key"),
            "accept": request.headers.get("Accept"),
            "body": await request.json(),
        })
        if status != 200:
            return web.Response(status=status, text="quota exceeded")
        response = web.StreamResponse()
        response.content_type = "audio/mpeg"
        await response.prepare(request)
        for chunk in (b"ID3", b"\xff\xfb\x90", b"\xff\xfb\x91"):
            await response.write(chunk)
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_post("/v1/text-to-speech/{voice_id}/stream", handler)
    return app


class TestElevenLabsClient:

    @pytest.mark.asyncio
    async def test_streams_audio_from_upstream(self):
        received = []
        async with TestServer(_tts_app(received)) as server:
            client = ElevenLabsClient(api_key="el_key", base_url=str(server.make_url("/v1/text-to-speech")))
            try:
                audio = b"".join([chunk async for chunk in client.stream("Namaste", PROFILE)])
            finally:
                await client.aclose()

        assert audio == b"ID3\xff\xfb\x90\xff\xfb\x91"
        assert received[0]["voice_id"] == "pNInz6obpgDQGcFmaJgB"
        assert received[0]["api_key"] == "el_key"
        assert received[0]["accept"] == "audio/mpeg"
        assert received[0]["body"]["model_id"] == "eleven_turbo_v2_5"

    @pytest.mark.asyncio
    async def test_missing_profile_streams_fallback_voice(self):
        received = []
        async with TestServer(_tts_app(received)) as server:
            client = ElevenLabsClient(api_key="el_key", base_url=str(server.make_url("/v1/text-to-speech")))
            try:
                audio = b"".join([chunk async for chunk in client.stream("Namaste", None)])
            finally:
                await client.aclose()

        assert audio.startswith(b"ID3")
        assert received[0]["voice_id"] == FALLBACK_VOICE_ID
        assert received[0]["body"]["model_id"] == FALLBACK_MODEL_ID

    @pytest.mark.asyncio
    async def test_http_error_raises_synthesis_error(self):
        async with TestServer(_tts_app([], status=401)) as server:
            client = ElevenLabsClient(api_key="bad", base_url=str(server.make_url("/v1/text-to-speech")))
            try:
                with pytest.raises(SynthesisError) as exc_info:
                    async for _ in client.stream("hi", PROFILE):
                        pass
            finally:
                await client.aclose()

        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self):
        client = ElevenLabsClient(api_key="el")
        await client.aclose()
        client._get_or_create_session()
        await client.aclose()
        await client.aclose()
        assert client._http_session is None
