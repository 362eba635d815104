"""
ElevenLabs streaming text-to-speech.

ElevenLabsClient is shared by all sessions and owns a pooled aiohttp session.
SynthesisBridge is per session: it relays chunks to the client as they arrive
and stops early once the session is no longer active.
"""
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import aiohttp

from logging_setup import get_logger, Component
from . import protocol
from .config import AgentConfig, FALLBACK_MODEL_ID, FALLBACK_VOICE_ID
from .errors import SynthesisError
from .observability import SessionObserver
from .persona import VoiceProfile, VoiceSettings

logger = get_logger(Component.TTS)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech"


def voice_and_model(profile: Optional[VoiceProfile]) -> Tuple[str, str]:
    """Voice and model ids for `profile`, or the built-in fallbacks when it is None."""
    if profile is None:
        return FALLBACK_VOICE_ID, FALLBACK_MODEL_ID
    return profile.voice_id, profile.model_id


class SynthesisClient(Protocol):
    def stream(self, text: str, profile: Optional[VoiceProfile]) -> AsyncIterator[bytes]:
        ...


class ElevenLabsClient:
    """ElevenLabs streaming TTS over HTTP with connection pooling."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        pool_size: int = 10,
        connect_timeout: float = 3.0,
        total_timeout: float = 60.0,
        base_url: str = ELEVENLABS_TTS_URL,
    ):
        self._api_key = api_key
        self._pool_size = pool_size
        self._connect_timeout = connect_timeout
        self._total_timeout = total_timeout
        self._base_url = base_url.rstrip("/")

        # Connection pooling
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._connector: Optional[aiohttp.TCPConnector] = None

    @classmethod
    def from_config(cls, config: AgentConfig) -> "ElevenLabsClient":
        return cls(
            api_key=config.elevenlabs_api_key,
            pool_size=config.elevenlabs_pool_size,
            connect_timeout=config.elevenlabs_connect_timeout,
            total_timeout=config.elevenlabs_total_timeout,
        )

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create shared HTTP session with connection pooling.

        Reuses TCP connections between requests to reduce latency.
        """
        if self._http_session is None or self._http_session.closed:
            self._connector = aiohttp.TCPConnector(
                limit=self._pool_size,
                limit_per_host=self._pool_size,
                ttl_dns_cache=300,
                force_close=False,
            )
            timeout = aiohttp.ClientTimeout(
                total=self._total_timeout,
                connect=self._connect_timeout,
            )
            self._http_session = aiohttp.ClientSession(
                connector=self._connector,
                timeout=timeout,
            )
            logger.info(
                "TTS connection pool created",
                pool_size=self._pool_size,
                connect_timeout_ms=int(self._connect_timeout * 1000),
                total_timeout_ms=int(self._total_timeout * 1000),
            )
        return self._http_session

    async def aclose(self) -> None:
        """
        Best-effort cleanup of HTTP session and connector.
        Safe to call multiple times.
        """
        if self._http_session is not None:
            try:
                await self._http_session.close()
                logger.info("TTS connection pool closed")
            except Exception as e:
                logger.warning(
                    "Error closing TTS HTTP session",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None
                self._connector = None

    def build_payload(self, text: str, profile: Optional[VoiceProfile]) -> Dict[str, Any]:
        settings = profile.settings if profile is not None else VoiceSettings()
        _, model_id = voice_and_model(profile)
        return {
            "text": text,
            "model_id": model_id,
            "voice_settings": settings.to_payload(),
        }

    async def stream(self, text: str, profile: Optional[VoiceProfile]) -> AsyncIterator[bytes]:
        """Yield MPEG audio chunks as they arrive. Raises SynthesisError on upstream failure."""
        voice_id, _ = voice_and_model(profile)
        url = f"{self._base_url}/{voice_id}/stream"
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self._api_key or "",
        }
        session = self._get_or_create_session()
        try:
            async with session.post(url, json=self.build_payload(text, profile), headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        "ElevenLabs TTS error",
                        status_code=response.status,
                        error_text=error_text[:500],
                        voice_id=voice_id,
                    )
                    raise SynthesisError(f"ElevenLabs API error: {response.status}")

                async for chunk in response.content.iter_any():
                    if chunk:
                        yield chunk
        except aiohttp.ClientError as e:
            raise SynthesisError(f"ElevenLabs stream failed: {type(e).__name__}: {e}") from e


@dataclass(frozen=True)
class SynthesisResult:
    chunks_sent: int
    completed: bool


class SynthesisBridge:
    """Relays one synthesis stream at a time to the client."""

    def __init__(
        self,
        client: SynthesisClient,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        is_active: Callable[[], bool],
        *,
        observer: Optional[SessionObserver] = None,
        session_id: Optional[str] = None,
    ):
        self._client = client
        self._send = send
        self._is_active = is_active
        self._observer = observer
        self.logger = logger.with_session(session_id) if session_id else logger

    async def synthesize(
        self,
        text: str,
        profile: Optional[VoiceProfile],
        *,
        turn_id: Optional[str] = None,
    ) -> SynthesisResult:
        """
        Stream `text` in `profile`'s voice.

        Sends audio_chunk messages with indices 1, 2, ... and audio_complete
        at the end. If the session stops mid-stream no further chunks are
        sent and audio_complete is skipped.
        """
        if self._observer is not None:
            voice_id, model_id = voice_and_model(profile)
            self._observer.tts_started(
                turn_id,
                voice_id=voice_id,
                model_id=model_id,
                text_length=len(text),
            )

        start = time.perf_counter()
        chunk_index = 0
        cancelled = False
        try:
            async with aclosing(self._client.stream(text, profile)) as chunks:
                async for chunk in chunks:
                    if not self._is_active():
                        cancelled = True
                        break
                    chunk_index += 1
                    await self._send(protocol.audio_chunk(chunk, chunk_index))
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(f"{type(e).__name__}: {e}") from e

        if cancelled or not self._is_active():
            self.logger.info("Synthesis stopped early, session inactive", chunks_sent=chunk_index)
            if self._observer is not None:
                self._observer.tts_cancelled(turn_id, chunks_sent=chunk_index)
            return SynthesisResult(chunks_sent=chunk_index, completed=False)

        await self._send(protocol.audio_complete(chunk_index))
        self.logger.info(
            "Synthesis completed",
            total_chunks=chunk_index,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        if self._observer is not None:
            self._observer.tts_completed(turn_id, total_chunks=chunk_index)
        return SynthesisResult(chunks_sent=chunk_index, completed=True)
