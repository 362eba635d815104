"""
Shared logging infrastructure for the voice agent.

Every component logs through a StructuredLogger obtained from get_logger().
Records are rendered as one JSON object per line on stdout, tagged with the
component, the session id (when bound) and any extra keyword fields:

    logger = get_logger(Component.STT, session_id="sess_123")
    logger.info("Recognition connection opened", model="nova-2")
    logger.debug_pii("Final transcript", text="what does today hold for me")

User speech and model output only ever travel in the nested "pii" object,
so log shipping can drop or redact that one key.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import partialmethod
from typing import Any, Dict, Optional


class Component(str, Enum):
    """System components for log tagging."""
    VOICE_AGENT = "voice_agent"
    GATEWAY = "gateway"
    SESSION_MANAGER = "session_manager"
    REGISTRY = "registry"
    ERROR_HANDLER = "error_handler"
    PERSONA = "persona"
    HISTORY = "history"
    STT = "stt"
    TURN_DETECTOR = "turn_detector"
    LLM = "llm"
    TTS = "tts"


# Third-party loggers that are chatty at INFO (one line per HTTP request).
NOISY_LOGGERS = ("aiohttp.access", "httpx", "httpcore", "openai")

# LogRecord attributes that are not user fields.
_RESERVED_RECORD_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "component", "session_id"}

_LATENCY_RE = re.compile(r'("latency_ms"\s*:\s*)(\d+)')


def _use_color() -> bool:
    if os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes"):
        return False
    if os.environ.get("FORCE_COLOR", "").lower() in ("1", "true", "yes"):
        return True
    try:
        return sys.stdout.isatty()
    except (AttributeError, OSError):
        return False


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record: timestamp, severity, component, message,
    session_id (when bound), then the record's extra fields.

    Integer latency_ms values are rendered as "<n> ms", in orange on a
    terminal. The suffix makes such lines invalid JSON; they are meant for
    humans tailing the console.
    """

    ORANGE = '\033[38;5;208m'
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id:
            log_data["session_id"] = session_id

        log_data.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RESERVED_RECORD_KEYS
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        output = json.dumps(log_data, ensure_ascii=False, default=str)
        if isinstance(log_data.get("latency_ms"), int):
            if _use_color():
                output = _LATENCY_RE.sub(rf'\1{self.ORANGE}\2 ms{self.RESET}', output)
            else:
                output = _LATENCY_RE.sub(r'\1\2 ms', output)
        return output


class StructuredLogger:
    """
    Component-tagged wrapper around a stdlib logger.

    Keyword arguments become top-level JSON fields. Fields passed to bind()
    are attached to every record of the returned logger.
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.context: Dict[str, Any] = dict(context or {})
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(self, level: int, message: str, *, pii: Optional[Dict[str, Any]] = None, exc_info=None, **fields):
        if not self.logger.isEnabledFor(level):
            return
        extra = {"component": self.component, **self.context, **fields}
        if self.session_id:
            extra["session_id"] = self.session_id
        if pii:
            extra["pii"] = pii
        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    debug = partialmethod(_log, logging.DEBUG)
    info = partialmethod(_log, logging.INFO)
    warning = partialmethod(_log, logging.WARNING)
    error = partialmethod(_log, logging.ERROR)
    critical = partialmethod(_log, logging.CRITICAL)

    def exception(self, message: str, **fields):
        self._log(logging.ERROR, message, exc_info=True, **fields)

    def debug_pii(self, message: str, **pii_fields):
        """Debug record whose fields are all nested under "pii"."""
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        self._log(logging.INFO, message, pii=pii_fields)

    def bind(self, **fields) -> "StructuredLogger":
        return StructuredLogger(
            self.component,
            session_id=self.session_id,
            logger_name=self.logger.name,
            context={**self.context, **fields},
        )

    def with_session(self, session_id: str) -> "StructuredLogger":
        return StructuredLogger(
            self.component,
            session_id=session_id,
            logger_name=self.logger.name,
            context=self.context,
        )


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Render a credential for logs without leaking it.

    "sk-abcdef123456" -> "sk-a...3456 (length: 15)"
    """
    if not value:
        return "MISSING"
    if len(value) <= visible * 2:
        return f"{'*' * len(value)} (length: {len(value)})"
    return f"{value[:visible]}...{value[-visible:]} (length: {len(value)})"


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_timestamp: bool = True
) -> None:
    """
    Install a single stdout handler on the root logger.

    Call once at process startup (see gateway/__main__.py). Loggers listed
    in NOISY_LOGGERS are held at WARNING or above.
    """
    if use_json:
        formatter: logging.Formatter = JSONFormatter()
    else:
        fmt = "%(levelname)s - %(component)s - %(message)s"
        if include_timestamp:
            fmt = "%(asctime)s - " + fmt
        formatter = logging.Formatter(fmt, defaults={"component": "unknown"})

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_logger.level, logging.WARNING))


def get_logger(
    component: str | Component,
    session_id: Optional[str] = None
) -> StructuredLogger:
    return StructuredLogger(component, session_id=session_id)
