"""
Streaming speech recognition (Deepgram live transcription).

DeepgramClient is created once per process; each session gets its own
DeepgramBridge. A bridge has two channels:
- inbound: raw audio frames, queued by send() and forwarded by a writer task
- outbound: `events`, a queue of RecognitionEvent produced by a reader task

The session consumes `events`; it never touches the websocket directly.
"""
import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import aiohttp

from logging_setup import get_logger, Component
from .config import AgentConfig
from .errors import ErrorCategory, RecognitionError

logger = get_logger(Component.STT)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


@dataclass(frozen=True)
class AudioFormat:
    """Client audio format: 16 kHz mono linear PCM."""
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1


class RecognitionEventKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    UTTERANCE_END = "utterance_end"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class RecognitionEvent:
    kind: RecognitionEventKind
    text: str = ""
    error: Optional[BaseException] = None


def parse_deepgram_message(data: Dict[str, Any]) -> Optional[RecognitionEvent]:
    """
    Map one Deepgram live message to a RecognitionEvent.

    Returns None for messages the session does not act on (Metadata,
    SpeechStarted, blank transcripts).
    """
    msg_type = data.get("type")

    if msg_type == "Results":
        alternatives = (data.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return None
        text = (alternatives[0].get("transcript") or "").strip()
        if not text:
            return None
        kind = RecognitionEventKind.FINAL if data.get("is_final") else RecognitionEventKind.PARTIAL
        return RecognitionEvent(kind=kind, text=text)

    if msg_type == "UtteranceEnd":
        return RecognitionEvent(kind=RecognitionEventKind.UTTERANCE_END)

    if msg_type == "Error":
        description = data.get("description") or data.get("message") or "Deepgram error"
        return RecognitionEvent(kind=RecognitionEventKind.ERROR, error=RecognitionError(str(description)))

    return None


class RecognitionBridge(Protocol):
    events: "asyncio.Queue[RecognitionEvent]"

    async def open(self, audio_format: AudioFormat) -> None:
        ...

    def send(self, frame: bytes) -> bool:
        ...

    async def close(self) -> None:
        ...


class RecognitionClient(Protocol):
    def create_bridge(self, session_id: Optional[str] = None) -> RecognitionBridge:
        ...


class DeepgramClient:
    """Shared Deepgram configuration and HTTP session."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str = "nova-2",
        language: str = "en",
        utterance_end_ms: int = 2000,
        url: str = DEEPGRAM_LISTEN_URL,
    ):
        self.api_key = api_key
        self.model = model
        self.language = language
        self.utterance_end_ms = utterance_end_ms
        self.url = url
        self._http_session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: AgentConfig) -> "DeepgramClient":
        return cls(
            api_key=config.deepgram_api_key,
            model=config.deepgram_model,
            language=config.deepgram_language,
            utterance_end_ms=config.deepgram_utterance_end_ms,
        )

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    def query_params(self, audio_format: AudioFormat) -> Dict[str, str]:
        # aiohttp requires str query values
        return {
            "model": self.model,
            "language": self.language,
            "encoding": audio_format.encoding,
            "sample_rate": str(audio_format.sample_rate),
            "channels": str(audio_format.channels),
            "interim_results": "true",
            "utterance_end_ms": str(self.utterance_end_ms),
            "vad_events": "true",
            "punctuate": "true",
            "smart_format": "true",
        }

    async def connect(self, audio_format: AudioFormat) -> aiohttp.ClientWebSocketResponse:
        session = self._get_or_create_session()
        return await session.ws_connect(
            self.url,
            params=self.query_params(audio_format),
            headers={"Authorization": f"Token {self.api_key or ''}"},
            heartbeat=10.0,
        )

    def create_bridge(self, session_id: Optional[str] = None) -> "DeepgramBridge":
        return DeepgramBridge(self, session_id=session_id)

    async def aclose(self) -> None:
        if self._http_session is not None:
            try:
                await self._http_session.close()
            except Exception as e:
                logger.warning("Error closing STT HTTP session", error=str(e), error_type=type(e).__name__)
            finally:
                self._http_session = None


class DeepgramBridge:
    """One live transcription connection."""

    def __init__(self, client: DeepgramClient, session_id: Optional[str] = None):
        self._client = client
        self.logger = logger.with_session(session_id) if session_id else logger
        self.events: "asyncio.Queue[RecognitionEvent]" = asyncio.Queue()
        self._frames: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._closing = False
        self._closed = False
        self._ended = False

    @property
    def is_open(self) -> bool:
        """True while frames can still reach the upstream connection."""
        if self._ws is None or self._closed or self._closing or self._ended:
            return False
        if self._ws.closed:
            return False
        return self._writer_task is not None and not self._writer_task.done()

    async def open(self, audio_format: AudioFormat = AudioFormat()) -> None:
        """Connect and start the reader/writer tasks. Raises RecognitionError on failure."""
        try:
            self._ws = await self._client.connect(audio_format)
        except Exception as e:
            self.logger.error("Recognition connection failed", error=str(e), error_type=type(e).__name__)
            raise RecognitionError(
                f"{type(e).__name__}: {e}",
                category=ErrorCategory.RECOGNITION_INIT_FAILED,
                message="Failed to start speech recognition",
            ) from e

        self.logger.info(
            "Recognition connection opened",
            model=self._client.model,
            language=self._client.language,
            sample_rate=audio_format.sample_rate,
        )
        self._reader_task = asyncio.create_task(self._reader())
        self._writer_task = asyncio.create_task(self._writer())

    def send(self, frame: bytes) -> bool:
        """Queue one audio frame. Returns False when the bridge is not open."""
        if not self.is_open:
            return False
        self._frames.put_nowait(frame)
        return True

    async def _writer(self) -> None:
        assert self._ws is not None
        try:
            while True:
                frame = await self._frames.get()
                if frame is None:
                    return
                await self._ws.send_bytes(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._ended = True
            if not self._closing:
                self.logger.error("Recognition send failed", error=str(e), error_type=type(e).__name__)
                await self.events.put(RecognitionEvent(kind=RecognitionEventKind.ERROR, error=e))

    async def _reader(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    data = json.loads(msg.data)
                    if data.get("type") == "Metadata":
                        self.logger.debug("Recognition metadata", request_id=data.get("request_id"))
                        continue
                    event = parse_deepgram_message(data)
                    if event is not None:
                        await self.events.put(event)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise self._ws.exception() or RecognitionError("Recognition websocket error")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._ended = True
            if not self._closing:
                self.logger.error("Recognition stream failed", error=str(e), error_type=type(e).__name__)
                await self.events.put(RecognitionEvent(kind=RecognitionEventKind.ERROR, error=e))
                return

        self._ended = True
        self.logger.info("Recognition connection closed", close_code=self._ws.close_code)
        await self.events.put(RecognitionEvent(kind=RecognitionEventKind.CLOSED))

    async def close(self) -> None:
        """Close the connection. Safe before open() and when already closed."""
        if self._closed or self._closing:
            return
        self._closing = True

        if self._writer_task is not None:
            self._frames.put_nowait(None)

        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.send_str(json.dumps({"type": "CloseStream"}))
                await self._ws.close()
            except Exception as e:
                self.logger.debug("Error closing recognition websocket", error=str(e), error_type=type(e).__name__)

        for task in (self._writer_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        tasks = [t for t in (self._writer_task, self._reader_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._closed = True
        self.logger.info("Recognition bridge closed")
