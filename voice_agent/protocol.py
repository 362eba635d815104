"""
WebSocket message envelopes for /api/voice/agent.

Client -> server messages are validated with pydantic; server -> client
messages are plain dicts built by the helpers below so the session can send
them with send_json.
"""
import base64
import binascii
import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ErrorCategory, ProtocolError


class StartMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "start"
    chat_id: Optional[str] = Field(None, alias="chatId")
    user_id: Optional[str] = Field(None, alias="userId")
    voice_name: Optional[str] = Field(None, alias="voiceName")


class AudioMessage(BaseModel):
    type: str = "audio"
    audio: str = Field(..., description="Base64-encoded linear16 PCM frame")


class StopMessage(BaseModel):
    type: str = "stop"


ClientMessage = Union[StartMessage, AudioMessage, StopMessage]

_CLIENT_MESSAGES = {
    "start": StartMessage,
    "audio": AudioMessage,
    "stop": StopMessage,
}


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]) -> ClientMessage:
    """
    Parse one client envelope.

    Raises ProtocolError for malformed JSON, unknown types and schema
    violations.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    msg_type = data.get("type")
    model = _CLIENT_MESSAGES.get(msg_type)
    if model is None:
        raise ProtocolError(
            f"Unknown message type: {msg_type!r}",
            category=ErrorCategory.UNKNOWN_MESSAGE_TYPE,
        )

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {msg_type} message: {e.error_count()} validation error(s)") from e


def decode_audio(message: AudioMessage) -> bytes:
    """Decode the base64 payload of an audio message."""
    try:
        return base64.b64decode(message.audio, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Invalid base64 audio: {e}") from e


# --- Server -> client ---


def started(chat_id: str, voice_name: str) -> Dict[str, Any]:
    return {
        "type": "started",
        "chatId": chat_id,
        "voiceName": voice_name,
        "message": "Voice agent started",
    }


def transcript(text: str, is_final: bool) -> Dict[str, Any]:
    return {"type": "transcript", "text": text, "isFinal": is_final}


def user_message(text: str) -> Dict[str, Any]:
    return {"type": "user_message", "text": text}


def ai_response(text: str) -> Dict[str, Any]:
    return {"type": "ai_response", "text": text}


def audio_chunk(chunk: bytes, chunk_index: int) -> Dict[str, Any]:
    return {
        "type": "audio_chunk",
        "audio": base64.b64encode(chunk).decode("ascii"),
        "chunkIndex": chunk_index,
    }


def audio_complete(total_chunks: int) -> Dict[str, Any]:
    return {"type": "audio_complete", "totalChunks": total_chunks}


def error(message: str, category: str, detail: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": "error", "message": message, "error": category}
    if detail:
        payload["detail"] = detail
    return payload


def stopped() -> Dict[str, Any]:
    return {"type": "stopped", "message": "Voice agent stopped"}
