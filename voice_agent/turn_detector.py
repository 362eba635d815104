"""
Turn detection.

Finalized transcript fragments accumulate on the session state. A turn
boundary fires on whichever comes first: the silence timer expiring, or an
explicit end-of-utterance from recognition. Taking the transcript and handing
it to the turn processor happens in one synchronous step, so no fragment is
lost or delivered twice.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Callable, Optional

from logging_setup import get_logger, Component

if TYPE_CHECKING:
    from .observability import SessionObserver
    from .session import SessionState

logger = get_logger(Component.TURN_DETECTOR)


class TurnDetector:
    """Silence-threshold turn detector with a single rearmable timer."""

    def __init__(
        self,
        state: "SessionState",
        on_turn: Callable[[str], None],
        *,
        silence_threshold_ms: int = 2000,
        sleep: Callable[[float], Any] = asyncio.sleep,
        observer: Optional["SessionObserver"] = None,
    ):
        self._state = state
        self._on_turn = on_turn
        self.silence_threshold_ms = silence_threshold_ms
        self._sleep = sleep
        self._observer = observer
        self._timer: Optional[asyncio.Task] = None
        self.logger = logger.with_session(state.session_id)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def add_final(self, text: str) -> None:
        """Append a finalized fragment and restart the silence timer."""
        text = text.strip()
        if not text:
            return
        self._state.transcript_fragments.append(text)
        self._restart_timer()

    def utterance_end(self) -> None:
        """Explicit end-of-utterance: evaluate the boundary now."""
        self._cancel_timer()
        self._fire("utterance_end")

    def rearm_if_pending(self) -> None:
        """Restart the timer for fragments that arrived while a turn was in flight."""
        if self._state.active and self._state.transcript_fragments and self._timer is None:
            self._restart_timer()

    def cancel(self) -> None:
        """Clear any pending timer (teardown)."""
        self._cancel_timer()

    def _restart_timer(self) -> None:
        self._cancel_timer()

        async def _timer():
            await self._sleep(self.silence_threshold_ms / 1000.0)
            self._timer = None
            self._fire("silence")

        self._timer = asyncio.get_running_loop().create_task(_timer())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, trigger: str) -> None:
        state = self._state
        if not state.active:
            return

        text = " ".join(state.transcript_fragments).strip()
        if not text:
            return

        if state.turn_in_flight:
            # Fragments stay queued and are attributed to the next boundary.
            self.logger.debug(
                "Turn boundary ignored, turn in flight",
                trigger=trigger,
                pending_fragments=len(state.transcript_fragments),
            )
            if self._observer is not None:
                self._observer.turn_skipped(
                    trigger=trigger,
                    reason="turn_in_flight",
                    pending_fragments=len(state.transcript_fragments),
                )
            return

        state.transcript_fragments.clear()
        self.logger.info("Turn boundary", trigger=trigger, transcript_length=len(text))
        self._on_turn(text)
