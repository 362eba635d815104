"""
Read-only diagnostics API over live voice sessions.

- GET /voice/sessions (optionally filtered by user_id)
- GET /voice/sessions/{session_id}
- GET /voice/sessions/{session_id}/events
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from observability.event_store import event_store
from voice_agent.registry import SessionRegistry


router = APIRouter(prefix="/voice", tags=["voice"])


class SessionSummary(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    voice_name: Optional[str] = None
    phase: str
    created_at: str
    frames_received: int = 0
    turns: int = 0


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.services.registry


def _to_summary(session) -> SessionSummary:
    record = session.summary()
    return SessionSummary(
        session_id=record.session_id,
        user_id=record.user_id,
        chat_id=record.chat_id,
        voice_name=record.voice_name,
        phase=record.phase,
        created_at=record.created_at.isoformat(),
        frames_received=record.frames_received,
        turns=record.turns,
    )


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    request: Request,
    user_id: Optional[str] = Query(None, description="Only sessions of this user"),
) -> List[SessionSummary]:
    """List live sessions."""
    sessions = _registry(request).list(user_id=user_id)
    return [_to_summary(s) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionSummary)
async def get_session(request: Request, session_id: str) -> SessionSummary:
    session = _registry(request).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _to_summary(session)


@router.get("/sessions/{session_id}/events")
async def get_session_events(
    session_id: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """
    OBS-00 events for a session, oldest first.

    Events outlive the session, so ended sessions can still be inspected.
    """
    events = event_store.query(session_id=session_id, event_type=event_type, limit=limit)
    return {
        "session_id": session_id,
        "events": events,
        "count": len(events),
    }
