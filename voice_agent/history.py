"""
Conversation history.

The persisted chat schema belongs to the host platform; the voice agent only
needs load-or-create and append. InMemoryHistoryStore is the default store and
the one used in tests.
"""
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from logging_setup import get_logger, Component

logger = get_logger(Component.HISTORY)

NEW_CHAT_ID = "new"
DEFAULT_CHAT_TITLE = "Voice Agent Chat"


@dataclass(frozen=True)
class ChatTurn:
    """One message in a conversation."""
    role: str  # "user" | "assistant"
    text: str

    def __post_init__(self):
        if self.role not in ("user", "assistant"):
            raise ValueError("role must be 'user' or 'assistant'")


@dataclass
class Conversation:
    """Ordered chat history for one chat id."""
    chat_id: str
    user_id: Optional[str]
    title: str = DEFAULT_CHAT_TITLE
    turns: List[ChatTurn] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def is_new_chat(chat_id: Optional[str]) -> bool:
    return not chat_id or chat_id == NEW_CHAT_ID


class HistoryStore(ABC):
    """Persistence collaborator for conversation history."""

    @abstractmethod
    async def load_or_create(self, chat_id: Optional[str], user_id: Optional[str]) -> Conversation:
        """
        Load the caller's conversation, or create a fresh one.

        A new conversation (with a newly generated id) is created when chat_id
        is missing, "new", unknown, or owned by a different user.
        """

    @abstractmethod
    async def append(self, chat_id: str, turn: ChatTurn) -> None:
        """Persist one turn at the end of the conversation."""


class InMemoryHistoryStore(HistoryStore):
    """Process-local history store."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._lock = threading.Lock()

    async def load_or_create(self, chat_id: Optional[str], user_id: Optional[str]) -> Conversation:
        with self._lock:
            existing = None if is_new_chat(chat_id) else self._conversations.get(chat_id)
            if existing is not None and existing.user_id == user_id:
                # Callers get a copy; the store stays the source of truth.
                return Conversation(
                    chat_id=existing.chat_id,
                    user_id=existing.user_id,
                    title=existing.title,
                    turns=list(existing.turns),
                    created_at=existing.created_at,
                )

            if existing is not None:
                logger.warning("Chat belongs to another user, starting a new one", chat_id=chat_id, user_id=user_id)
            elif not is_new_chat(chat_id):
                logger.info("Unknown chat id, starting a new one", chat_id=chat_id)

            # Ids are always minted here; client-supplied ids are never adopted.
            new_id = uuid.uuid4().hex
            conversation = Conversation(chat_id=new_id, user_id=user_id)
            self._conversations[new_id] = conversation
            logger.info("Conversation created", chat_id=new_id, user_id=user_id)
            return Conversation(
                chat_id=conversation.chat_id,
                user_id=conversation.user_id,
                title=conversation.title,
                created_at=conversation.created_at,
            )

    async def append(self, chat_id: str, turn: ChatTurn) -> None:
        with self._lock:
            conversation = self._conversations.get(chat_id)
            if conversation is None:
                raise KeyError(f"Unknown chat_id: {chat_id}")
            conversation.turns.append(turn)

    def get(self, chat_id: str) -> Optional[Conversation]:
        """Current stored conversation (for diagnostics and tests)."""
        with self._lock:
            return self._conversations.get(chat_id)
