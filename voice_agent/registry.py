"""
Registry of live voice sessions.

Sessions are inserted when a connection starts and removed on teardown. A
secondary index maps user ids to their live sessions (presence).
"""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

from logging_setup import get_logger, Component

logger = get_logger(Component.REGISTRY)


@dataclass
class SessionRecord:
    """Read-only view of a live session for diagnostics."""
    session_id: str
    user_id: Optional[str]
    chat_id: Optional[str]
    voice_name: Optional[str]
    phase: str
    created_at: datetime
    frames_received: int = 0
    turns: int = 0


class SessionRegistry:
    """Lock-guarded map of session_id -> session, indexed by user_id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, object] = {}
        self._by_user: Dict[str, Set[str]] = {}

    def register(self, session_id: str, session: object, user_id: Optional[str] = None) -> None:
        with self._lock:
            self._sessions[session_id] = session
            if user_id:
                self._by_user.setdefault(user_id, set()).add(session_id)
        logger.info("Session registered", session_id=session_id, user_id=user_id)

    def unregister(self, session_id: str, user_id: Optional[str] = None) -> bool:
        """Remove a session. Returns False when it was not registered."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
            if user_id and user_id in self._by_user:
                self._by_user[user_id].discard(session_id)
                if not self._by_user[user_id]:
                    del self._by_user[user_id]
        if removed:
            logger.info("Session unregistered", session_id=session_id, user_id=user_id)
        return removed

    def get(self, session_id: str) -> Optional[object]:
        with self._lock:
            return self._sessions.get(session_id)

    def list(self, user_id: Optional[str] = None) -> List[object]:
        with self._lock:
            if user_id is None:
                return list(self._sessions.values())
            ids = self._by_user.get(user_id, set())
            return [self._sessions[sid] for sid in ids if sid in self._sessions]

    def is_user_online(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._by_user.get(user_id))

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
