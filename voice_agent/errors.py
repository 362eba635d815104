"""
Voice agent error taxonomy.

Every error that reaches the client carries a stable category string. Fatal
categories (configuration, recognition) tear the session down; everything
else is reported and the conversation continues on the next turn.
"""
from typing import Optional


class ErrorCategory:
    """Stable error categories sent in the `error` field of error events."""

    # Fatal before the session becomes active
    MISSING_API_KEYS = "config.missing_api_keys"

    # Fatal to an active session
    RECOGNITION_INIT_FAILED = "recognition.init_failed"
    RECOGNITION_FAILED = "recognition.failed"

    # Recoverable
    PERSONA_FALLBACK = "persona.fallback"
    LLM_FAILED = "turn.llm_failed"
    PERSISTENCE_FAILED = "turn.persistence_failed"
    TURN_FAILED = "turn.failed"
    SYNTHESIS_FAILED = "synthesis.failed"
    MALFORMED_MESSAGE = "protocol.malformed_message"
    UNKNOWN_MESSAGE_TYPE = "protocol.unknown_type"
    INVALID_STATE = "protocol.invalid_state"


class UpstreamErrorCategory:
    """Coarse classification of vendor failures (Deepgram, OpenAI, ElevenLabs)."""

    AUTH_FAILED = "upstream.auth_failed"
    RATE_LIMITED = "upstream.rate_limited"
    NETWORK_ERROR = "upstream.network_error"
    UNAVAILABLE = "upstream.unavailable"
    UNKNOWN_ERROR = "upstream.unknown_error"


class VoiceAgentError(Exception):
    """Base class for errors surfaced to the client as `error` events."""

    category: str = ErrorCategory.TURN_FAILED
    message: str = "Voice agent error"
    fatal: bool = False

    def __init__(self, detail: str = "", *, category: Optional[str] = None, message: Optional[str] = None):
        super().__init__(detail or self.message)
        self.detail = detail
        if category is not None:
            self.category = category
        if message is not None:
            self.message = message


class ConfigurationError(VoiceAgentError):
    """Upstream credentials are missing; the connection is rejected."""

    category = ErrorCategory.MISSING_API_KEYS
    message = "Server configuration error: Missing API keys"
    fatal = True


class RecognitionError(VoiceAgentError):
    """The speech recognition connection failed."""

    category = ErrorCategory.RECOGNITION_FAILED
    message = "Speech recognition error"
    fatal = True


class TurnProcessingError(VoiceAgentError):
    """LLM or persistence failure while processing one turn."""

    category = ErrorCategory.TURN_FAILED
    message = "Error processing response"


class SynthesisError(VoiceAgentError):
    """The speech synthesis request or stream failed."""

    category = ErrorCategory.SYNTHESIS_FAILED
    message = "Error generating speech"


class ProtocolError(VoiceAgentError):
    """A client message could not be parsed or is not valid in the current state."""

    category = ErrorCategory.MALFORMED_MESSAGE
    message = "Error processing message"


def classify_upstream_error(error: BaseException) -> str:
    """
    Classify a vendor failure into a stable upstream category.

    Only the message text and exception type are inspected, so this works for
    aiohttp, openai and plain exceptions alike.
    """
    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if "auth" in error_str or "unauthorized" in error_str or "401" in error_str or "403" in error_str:
        return UpstreamErrorCategory.AUTH_FAILED

    if "rate limit" in error_str or "429" in error_str or "ratelimit" in error_type:
        return UpstreamErrorCategory.RATE_LIMITED

    if (
        "timeout" in error_str
        or "connection" in error_str
        or "network" in error_str
        or "timeout" in error_type
        or "connection" in error_type
    ):
        return UpstreamErrorCategory.NETWORK_ERROR

    if "503" in error_str or "502" in error_str or "unavailable" in error_str:
        return UpstreamErrorCategory.UNAVAILABLE

    return UpstreamErrorCategory.UNKNOWN_ERROR


def redact_detail(detail: str) -> str:
    """Hide error details that look like they could contain credentials."""
    lowered = detail.lower()
    if "secret" in lowered or "password" in lowered or "api_key" in lowered or "api key" in lowered:
        return "[redacted: potential secret]"
    return detail
