"""
Voice agent observability.

Emits OBS-00 events for the session and turn lifecycle:
- session.started / session.persona_fallback / session.ended
- stt.final
- turn.started / turn.skipped / turn.failed
- llm.request / llm.response
- tts.started / tts.completed / tts.cancelled

Every turn gets a correlation id, so llm.* and tts.* events can be joined to
the turn.started that opened them. User and assistant text is PII-flagged.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Dict, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity, pii_fields
from .errors import classify_upstream_error


class SessionObserver:
    """Per-session event emitter with turn tracking."""

    def __init__(
        self,
        session_id: str,
        *,
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], float] = time.time,
    ):
        self.session_id = session_id
        self.emitter = emitter or EventEmitter(ObsComponent.VOICE_AGENT)
        self.logger = get_logger(LogComponent.VOICE_AGENT, session_id=session_id)
        self._now = now

        self.current_turn_id: Optional[str] = None
        self.turn_count: int = 0
        self._llm_request_ts: Optional[float] = None
        self._tts_started_ts: Optional[float] = None

    def _emit(self, event_type: str, severity: Severity = Severity.INFO, **kwargs: Any) -> Dict[str, Any]:
        return self.emitter.emit(event_type, session_id=self.session_id, severity=severity, **kwargs)

    # --- Session lifecycle ---

    def session_started(self, *, voice_name: str, chat_id: str, voice_id: str, user_id: Optional[str]) -> None:
        self._emit(
            "session.started",
            voice_name=voice_name,
            voice_id=voice_id,
            chat_id=chat_id,
            user_id=user_id,
        )

    def persona_fallback(self, *, voice_name: str, voice_id: str) -> None:
        self._emit(
            "session.persona_fallback",
            severity=Severity.WARN,
            voice_name=voice_name,
            fallback_voice_id=voice_id,
        )

    def session_ended(self, *, reason: str, frames_received: int) -> None:
        self._emit(
            "session.ended",
            reason=reason,
            frames_received=frames_received,
            turns=self.turn_count,
        )

    # --- Turn lifecycle ---

    def new_turn(self) -> str:
        self.turn_count += 1
        turn_id = f"turn_{self.turn_count}_{uuid.uuid4().hex[:6]}"
        self.current_turn_id = turn_id
        return turn_id

    def stt_final(self, text: str) -> None:
        # Finals arrive before their turn exists; correlate on the session.
        self._emit(
            "stt.final",
            pii=pii_fields("transcript_text"),
            transcript_length=len(text),
            transcript_text=text,
        )

    def turn_started(self, turn_id: str, text: str) -> None:
        self._emit(
            "turn.started",
            correlation_id=turn_id,
            pii=pii_fields("transcript_text"),
            transcript_length=len(text),
            transcript_text=text,
        )

    def turn_skipped(self, *, trigger: str, reason: str, pending_fragments: int) -> None:
        self._emit(
            "turn.skipped",
            severity=Severity.DEBUG,
            trigger=trigger,
            reason=reason,
            pending_fragments=pending_fragments,
        )

    def turn_failed(self, turn_id: Optional[str], *, category: str, error: BaseException) -> None:
        self._emit(
            "turn.failed",
            severity=Severity.ERROR,
            correlation_id=turn_id,
            category=category,
            upstream_category=classify_upstream_error(error),
            error_class=type(error).__name__,
        )

    # --- LLM ---

    def llm_request(self, turn_id: str, *, model: Optional[str], message_count: int) -> None:
        self._llm_request_ts = self._now()
        self._emit(
            "llm.request",
            correlation_id=turn_id,
            model=model,
            message_count=message_count,
        )

    def llm_response(self, turn_id: str, text: str) -> None:
        latency_ms = None
        if self._llm_request_ts is not None:
            latency_ms = int((self._now() - self._llm_request_ts) * 1000)
            self._llm_request_ts = None

        self.logger.info("LLM call completed", correlation_id=turn_id, latency_ms=latency_ms)
        self._emit(
            "llm.response",
            correlation_id=turn_id,
            pii=pii_fields("output_text"),
            latency_ms=latency_ms,
            output_length=len(text),
            output_text=text,
        )

    # --- TTS ---

    def tts_started(self, turn_id: Optional[str], *, voice_id: str, model_id: str, text_length: int) -> None:
        self._tts_started_ts = self._now()
        self._emit(
            "tts.started",
            correlation_id=turn_id,
            voice_id=voice_id,
            model_id=model_id,
            text_length=text_length,
        )

    def _tts_latency_ms(self) -> Optional[int]:
        if self._tts_started_ts is None:
            return None
        latency_ms = int((self._now() - self._tts_started_ts) * 1000)
        self._tts_started_ts = None
        return latency_ms

    def tts_completed(self, turn_id: Optional[str], *, total_chunks: int) -> None:
        self._emit(
            "tts.completed",
            correlation_id=turn_id,
            total_chunks=total_chunks,
            latency_ms=self._tts_latency_ms(),
        )

    def tts_cancelled(self, turn_id: Optional[str], *, chunks_sent: int) -> None:
        self._emit(
            "tts.cancelled",
            correlation_id=turn_id,
            chunks_sent=chunks_sent,
            latency_ms=self._tts_latency_ms(),
        )
