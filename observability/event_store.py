"""
OBS-00 event store for querying events by session_id.

In-memory and bounded; the Gateway diagnostics API reads from it. Events
outlive the session that produced them until they are evicted.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

_ENVELOPE_KEYS = ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii")


@dataclass
class StoredEvent:
    """An OBS-00 event held in memory."""

    ts: datetime
    session_id: str
    component: str
    event_type: str
    severity: str
    correlation_id: str
    pii: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "StoredEvent":
        raw_ts = event.get("ts")
        ts = datetime.fromisoformat(raw_ts.replace("Z", "+00:00")) if isinstance(raw_ts, str) else datetime.now(timezone.utc)
        session_id = event.get("session_id", "")
        return cls(
            ts=ts,
            session_id=session_id,
            component=event.get("component", "unknown"),
            event_type=event.get("event_type", "unknown"),
            severity=event.get("severity", "info"),
            correlation_id=event.get("correlation_id") or session_id,
            pii=event.get("pii") or {"contains_pii": False, "fields": [], "handling": "none"},
            payload={k: v for k, v in event.items() if k not in _ENVELOPE_KEYS},
        )

    def matches(
        self,
        session_id: Optional[str],
        event_type: Optional[str],
        correlation_id: Optional[str],
    ) -> bool:
        return (
            (not session_id or self.session_id == session_id)
            and (not event_type or self.event_type == event_type)
            and (not correlation_id or self.correlation_id == correlation_id)
        )

    def to_dict(self) -> Dict[str, Any]:
        envelope = {
            "ts": self.ts.isoformat(),
            "session_id": self.session_id,
            "component": self.component,
            "event_type": self.event_type,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
            "pii": self.pii,
        }
        return {**envelope, **self.payload}


class EventStore:
    """
    Bounded FIFO of OBS-00 events (default 10,000).

    Writes come from the event loop, reads may come from the HTTP threadpool,
    so access goes through a lock.
    """

    def __init__(self, max_events: int = 10000):
        self._max_events = max_events
        self._events: Deque[StoredEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def store(self, event: Dict[str, Any]) -> None:
        stored = StoredEvent.from_event(event)
        with self._lock:
            self._events.append(stored)

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Events matching all given filters, oldest first."""
        with self._lock:
            snapshot = list(self._events)

        matched = [e for e in snapshot if e.matches(session_id, event_type, correlation_id)]
        if limit:
            matched = matched[:limit]
        return [e.to_dict() for e in matched]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            oldest = self._events[0].ts.isoformat() if self._events else None
            newest = self._events[-1].ts.isoformat() if self._events else None
            return {
                "total_events": len(self._events),
                "max_events": self._max_events,
                "oldest_event_ts": oldest,
                "newest_event_ts": newest,
            }


event_store = EventStore()
