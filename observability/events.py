"""
OBS-00: Structured JSON event emission.

Every event carries the same envelope (ts, session_id, component, event_type,
severity, correlation_id, pii) followed by event-specific fields.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import EventStore, event_store


class Component(str, Enum):
    """Event sources per OBS-00."""

    VOICE_AGENT = "voice_agent"
    GATEWAY = "gateway"


class Severity(str, Enum):
    """Event severity levels per OBS-00."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def pii_fields(*fields: str) -> Optional[Dict[str, Any]]:
    """PII marker for the given payload field names (None when there are none)."""
    present = [f for f in fields if f]
    if not present:
        return None
    return {"contains_pii": True, "fields": present, "handling": "none"}


class EventEmitter:
    """Emits structured JSON events per OBS-00."""

    def __init__(self, component: Component, store: Optional[EventStore] = None):
        self.component = component
        self._store = store if store is not None else event_store

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event.

        Args:
            event_type: Stable event type string (e.g. "turn.started")
            session_id: Opaque session identifier
            severity: Event severity level
            correlation_id: Turn id (defaults to the session id)
            pii: PII marker (see pii_fields)
            **kwargs: Event-specific fields; None values are dropped
        """
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update({k: v for k, v in kwargs.items() if v is not None})

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        self._store.store(event)
        return event
