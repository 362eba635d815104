"""
Voice agent session: one per WebSocket connection.

State machine: IDLE -> LISTENING -> PROCESSING -> LISTENING -> ... -> CLOSED.
CLOSED is terminal. Audio keeps flowing to recognition while a turn is being
processed.

All cleanup goes through _teardown(), which runs at most once no matter how
the session ends (client stop, disconnect, recognition failure, rejected
start). An in-flight LLM call is not cancelled; anything it produces is
dropped by _send() because the session is no longer active.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union

from logging_setup import get_logger, Component
from . import protocol
from .errors import (
    ConfigurationError,
    ErrorCategory,
    ProtocolError,
    RecognitionError,
    VoiceAgentError,
    redact_detail,
)
from .history import Conversation
from .observability import SessionObserver
from .persona import VoiceProfile, resolve_voice_profile
from .recognition import AudioFormat, RecognitionBridge, RecognitionEventKind
from .registry import SessionRecord
from .services import VoiceAgentServices
from .synthesis import SynthesisBridge
from .turn_detector import TurnDetector
from .turn_processor import TurnProcessor

AUDIO_LOG_INTERVAL = 50

# Sent even after the session stops being active.
_ALWAYS_DELIVERED = frozenset({"error", "stopped"})


class SessionPhase(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    CLOSED = "closed"


@dataclass
class SessionState:
    """Mutable per-connection state."""
    session_id: str
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    voice_name: Optional[str] = None
    active: bool = False
    phase: SessionPhase = SessionPhase.IDLE
    transcript_fragments: List[str] = field(default_factory=list)
    turn_in_flight: bool = False
    profile: Optional[VoiceProfile] = None
    conversation: Optional[Conversation] = None
    frames_received: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ClientConnection(Protocol):
    """The subset of a WebSocket the session needs."""

    async def send_json(self, data: Any) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class VoiceAgentSession:
    """Orchestrates recognition, turn detection, turn processing and synthesis."""

    def __init__(
        self,
        connection: ClientConnection,
        services: VoiceAgentServices,
        *,
        session_id: Optional[str] = None,
        observer: Optional[SessionObserver] = None,
    ):
        self._connection = connection
        self._services = services
        self.state = SessionState(session_id=session_id or uuid.uuid4().hex)
        self.observer = observer or SessionObserver(self.state.session_id)
        self.logger = get_logger(Component.SESSION_MANAGER, session_id=self.state.session_id)

        self.detector: Optional[TurnDetector] = None
        self.processor: Optional[TurnProcessor] = None
        self._bridge: Optional[RecognitionBridge] = None
        self._pump_task: Optional[asyncio.Task] = None

        self._torn_down = False
        self._stopped_sent = False
        self._transport_closed = False

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def closed(self) -> bool:
        return self.state.phase == SessionPhase.CLOSED

    def is_active(self) -> bool:
        return self.state.active

    def summary(self) -> SessionRecord:
        state = self.state
        return SessionRecord(
            session_id=state.session_id,
            user_id=state.user_id,
            chat_id=state.chat_id,
            voice_name=state.voice_name,
            phase=state.phase.value,
            created_at=state.created_at,
            frames_received=state.frames_received,
            turns=self.observer.turn_count,
        )

    # --- Outbound ---

    async def _send(self, payload: Dict[str, Any]) -> None:
        if self._transport_closed:
            return
        if not self.state.active and payload.get("type") not in _ALWAYS_DELIVERED:
            self.logger.debug("Dropping message, session inactive", message_type=payload.get("type"))
            return
        try:
            await self._connection.send_json(payload)
        except Exception as e:
            # The client went away; the gateway will call on_disconnect().
            self._transport_closed = True
            self.logger.info("Send failed, connection closed", error=str(e), error_type=type(e).__name__)

    async def _send_error(self, error: VoiceAgentError) -> None:
        await self._send(protocol.error(error.message, error.category, redact_detail(error.detail) or None))

    # --- Inbound ---

    async def handle_message(self, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """Parse and dispatch one client message. Errors are reported to the client, not raised."""
        message = None
        try:
            message = protocol.parse_client_message(raw)
            if isinstance(message, protocol.StartMessage):
                await self.start(message)
            elif isinstance(message, protocol.AudioMessage):
                self.submit_audio(protocol.decode_audio(message))
            else:
                await self.stop()
        except ProtocolError as e:
            self.logger.warning("Protocol error", category=e.category, error=e.detail)
            await self._send_error(e)
        except Exception as e:
            self.logger.error("Error handling message", error=str(e), error_type=type(e).__name__)
            await self._send(protocol.error("Error processing message", ErrorCategory.MALFORMED_MESSAGE))
            if isinstance(message, protocol.StartMessage):
                # A half-started session cannot recover.
                await self._teardown("start_failed", close_connection=True)

    async def start(self, message: protocol.StartMessage) -> None:
        state = self.state
        services = self._services
        config = services.config

        if state.phase != SessionPhase.IDLE:
            raise ProtocolError(
                f"Cannot start session in phase {state.phase.value}",
                category=ErrorCategory.INVALID_STATE,
                message="Voice agent already started",
            )

        missing = config.missing_credentials()
        if missing:
            self.logger.error("Missing API keys", missing=missing)
            await self._send_error(ConfigurationError())
            await self._teardown("missing_api_keys", close_connection=True)
            return

        voice_name = message.voice_name or config.default_voice_name
        profile, resolved = resolve_voice_profile(services.personas, voice_name, config)
        state.user_id = message.user_id
        state.voice_name = voice_name
        state.profile = profile

        try:
            conversation = await services.history.load_or_create(message.chat_id, message.user_id)
        except Exception as e:
            self.logger.error("Failed to load conversation", error=str(e), error_type=type(e).__name__)
            await self._send_error(
                VoiceAgentError(
                    f"{type(e).__name__}: {e}",
                    category=ErrorCategory.PERSISTENCE_FAILED,
                    message="Failed to start voice agent",
                )
            )
            await self._teardown("history_unavailable", close_connection=True)
            return
        state.conversation = conversation
        state.chat_id = conversation.chat_id
        self.logger = self.logger.bind(chat_id=state.chat_id, voice_name=voice_name)

        bridge = services.recognition.create_bridge(state.session_id)
        self._bridge = bridge
        try:
            await bridge.open(AudioFormat())
        except Exception as e:
            error = e if isinstance(e, RecognitionError) else RecognitionError(
                f"{type(e).__name__}: {e}",
                category=ErrorCategory.RECOGNITION_INIT_FAILED,
                message="Failed to start speech recognition",
            )
            self.logger.error("Recognition failed to open", error=str(e), error_type=type(e).__name__)
            await self._send_error(error)
            await self._teardown("recognition_init_failed", close_connection=True)
            return

        synthesis = SynthesisBridge(
            services.synthesis,
            self._send,
            self.is_active,
            observer=self.observer,
            session_id=state.session_id,
        )
        self.processor = TurnProcessor(
            state,
            history=services.history,
            llm=services.llm,
            synthesis=synthesis,
            send=self._send,
            observer=self.observer,
            model_name=config.openai_model,
            on_turn_done=self._on_turn_done,
        )
        self.detector = TurnDetector(
            state,
            self._on_turn,
            silence_threshold_ms=config.silence_threshold_ms,
            observer=self.observer,
        )

        state.active = True
        state.phase = SessionPhase.LISTENING
        services.registry.register(state.session_id, self, user_id=state.user_id)
        self._pump_task = asyncio.create_task(self._pump_recognition_events())

        self.observer.session_started(
            voice_name=voice_name,
            chat_id=state.chat_id,
            voice_id=profile.voice_id,
            user_id=state.user_id,
        )
        self.logger.info(
            "Voice agent started",
            persona_resolved=resolved,
        )
        await self._send(protocol.started(state.chat_id, voice_name))

        if not resolved:
            self.observer.persona_fallback(voice_name=voice_name, voice_id=profile.voice_id)
            await self._send(
                protocol.error(
                    f"Voice '{voice_name}' not available, using default voice",
                    ErrorCategory.PERSONA_FALLBACK,
                )
            )

    def submit_audio(self, frame: bytes) -> bool:
        """Forward one audio frame to recognition. Returns False when the frame was dropped."""
        state = self.state
        if state.phase not in (SessionPhase.LISTENING, SessionPhase.PROCESSING) or self._bridge is None:
            self.logger.debug("Dropping audio frame, session not listening", phase=state.phase.value)
            return False

        state.frames_received += 1
        if state.frames_received % AUDIO_LOG_INTERVAL == 0:
            self.logger.debug("Audio frames received", frames_received=state.frames_received)
        return self._bridge.send(frame)

    async def stop(self) -> None:
        """Client-requested stop. Idempotent; `stopped` is sent once."""
        await self._teardown("client_stop")
        if not self._stopped_sent:
            self._stopped_sent = True
            await self._send(protocol.stopped())

    async def on_disconnect(self) -> None:
        self._transport_closed = True
        await self._teardown("disconnect")

    # --- Recognition events ---

    async def _pump_recognition_events(self) -> None:
        bridge = self._bridge
        assert bridge is not None
        while True:
            event = await bridge.events.get()

            if event.kind == RecognitionEventKind.PARTIAL:
                await self._send(protocol.transcript(event.text, is_final=False))

            elif event.kind == RecognitionEventKind.FINAL:
                self.logger.debug_pii("Final transcript", text=event.text)
                await self._send(protocol.transcript(event.text, is_final=True))
                self.observer.stt_final(event.text)
                if self.detector is not None:
                    self.detector.add_final(event.text)

            elif event.kind == RecognitionEventKind.UTTERANCE_END:
                if self.detector is not None:
                    self.detector.utterance_end()

            elif event.kind == RecognitionEventKind.ERROR:
                await self._fail_recognition(event.error)
                return

            elif event.kind == RecognitionEventKind.CLOSED:
                await self._fail_recognition(RecognitionError("Recognition stream closed unexpectedly"))
                return

    async def _fail_recognition(self, cause: Optional[BaseException]) -> None:
        if isinstance(cause, RecognitionError):
            error = cause
        else:
            error = RecognitionError(f"{type(cause).__name__}: {cause}" if cause else "")
        self.logger.error("Recognition failed", error=str(cause), error_type=type(cause).__name__)
        await self._send_error(error)
        await self.stop()

    # --- Turn callbacks ---

    def _on_turn(self, text: str) -> None:
        if self.processor is None:
            return
        self.state.phase = SessionPhase.PROCESSING
        self.processor.submit(text)

    def _on_turn_done(self) -> None:
        if not self.state.active:
            return
        self.state.phase = SessionPhase.LISTENING
        if self.detector is not None:
            self.detector.rearm_if_pending()

    # --- Cleanup ---

    async def _teardown(self, reason: str, *, close_connection: bool = False) -> None:
        if self._torn_down:
            return
        self._torn_down = True

        state = self.state
        was_active = state.active
        state.active = False
        state.phase = SessionPhase.CLOSED

        if self.detector is not None:
            self.detector.cancel()
        state.transcript_fragments.clear()

        if self._bridge is not None:
            try:
                await self._bridge.close()
            except Exception as e:
                self.logger.warning("Error closing recognition", error=str(e), error_type=type(e).__name__)

        if self._pump_task is not None and self._pump_task is not asyncio.current_task():
            self._pump_task.cancel()

        if was_active:
            self._services.registry.unregister(state.session_id, user_id=state.user_id)

        self.observer.session_ended(reason=reason, frames_received=state.frames_received)
        self.logger.info("Voice agent stopped", reason=reason, frames_received=state.frames_received)

        if close_connection and not self._transport_closed:
            self._transport_closed = True
            try:
                await self._connection.close()
            except Exception as e:
                self.logger.debug("Error closing connection", error=str(e), error_type=type(e).__name__)
