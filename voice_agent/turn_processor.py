"""
Turn processing: user text -> history -> LLM -> history -> synthesis.

At most one turn runs per session. `turn_in_flight` is set by submit() before
the task is scheduled and cleared in process()'s finally block, so the turn
detector can never start a second turn while one is running.

Failures are reported to the client as non-fatal error events; the session
keeps listening.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Set

from logging_setup import get_logger, Component
from . import protocol
from .errors import ErrorCategory, TurnProcessingError, VoiceAgentError, redact_detail
from .history import ChatTurn, HistoryStore
from .llm import LanguageModel, build_messages
from .synthesis import SynthesisBridge

if TYPE_CHECKING:
    from .observability import SessionObserver
    from .session import SessionState

logger = get_logger(Component.LLM)


class TurnProcessor:
    """Runs one conversational turn at a time for a session."""

    def __init__(
        self,
        state: "SessionState",
        *,
        history: HistoryStore,
        llm: LanguageModel,
        synthesis: SynthesisBridge,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        observer: Optional["SessionObserver"] = None,
        model_name: Optional[str] = None,
        on_turn_done: Optional[Callable[[], None]] = None,
    ):
        self._state = state
        self._history = history
        self._llm = llm
        self._synthesis = synthesis
        self._send = send
        self._observer = observer
        self._model_name = model_name
        self._on_turn_done = on_turn_done
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logger.with_session(state.session_id)

    @property
    def busy(self) -> bool:
        return self._state.turn_in_flight

    def submit(self, text: str) -> asyncio.Task:
        """Mark the turn in flight and schedule process(text)."""
        self._state.turn_in_flight = True
        task = asyncio.get_running_loop().create_task(self.process(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for scheduled turns to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _persist(self, turn: ChatTurn) -> None:
        state = self._state
        try:
            await self._history.append(state.conversation.chat_id, turn)
        except Exception as e:
            raise TurnProcessingError(
                f"{type(e).__name__}: {e}",
                category=ErrorCategory.PERSISTENCE_FAILED,
                message="Error saving conversation",
            ) from e
        state.conversation.turns.append(turn)

    async def process(self, text: str) -> None:
        state = self._state
        state.turn_in_flight = True
        observer = self._observer
        turn_id = observer.new_turn() if observer is not None else None

        try:
            if observer is not None:
                observer.turn_started(turn_id, text)
            self.logger.info_pii("Processing turn", text=text)

            await self._persist(ChatTurn(role="user", text=text))
            await self._send(protocol.user_message(text))

            messages = build_messages(state.profile.prompt, state.conversation.turns)
            if observer is not None:
                observer.llm_request(turn_id, model=self._model_name, message_count=len(messages))
            try:
                response = await self._llm.complete(messages)
            except Exception as e:
                raise TurnProcessingError(
                    f"{type(e).__name__}: {e}",
                    category=ErrorCategory.LLM_FAILED,
                ) from e
            if not response:
                raise TurnProcessingError("Empty completion", category=ErrorCategory.LLM_FAILED)
            if observer is not None:
                observer.llm_response(turn_id, response)

            await self._persist(ChatTurn(role="assistant", text=response))
            await self._send(protocol.ai_response(response))

            if not state.active:
                self.logger.info("Session stopped during turn, skipping synthesis")
                return

            await self._synthesis.synthesize(response, state.profile, turn_id=turn_id)

        except VoiceAgentError as e:
            await self._report(turn_id, e)
        except Exception as e:
            await self._report(turn_id, TurnProcessingError(f"{type(e).__name__}: {e}"))
        finally:
            state.turn_in_flight = False
            if self._on_turn_done is not None:
                self._on_turn_done()

    async def _report(self, turn_id: Optional[str], error: VoiceAgentError) -> None:
        cause = error.__cause__ or error
        self.logger.error(
            "Turn failed",
            correlation_id=turn_id,
            category=error.category,
            error=str(cause),
            error_type=type(cause).__name__,
        )
        if self._observer is not None:
            self._observer.turn_failed(turn_id, category=error.category, error=cause)
        await self._send(protocol.error(error.message, error.category, redact_detail(error.detail)))
