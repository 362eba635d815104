"""
Voice agent gateway server.

Hosts the voice WebSocket endpoint, a health probe and the diagnostics API.
Upstream clients are created once in the lifespan handler and shared by all
sessions through app.state.services.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from logging_setup import get_logger, Component
from voice_agent.config import get_config
from voice_agent.services import VoiceAgentServices
from voice_agent.session import VoiceAgentSession
from .sessions_api import router as sessions_router

# Load local env files (if present) so credentials can live outside the shell.
root = Path(__file__).resolve().parents[1]
for name in (".env", ".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

logger = get_logger(Component.GATEWAY)

VOICE_AGENT_PATH = "/api/voice/agent"


def create_app(services: Optional[VoiceAgentServices] = None) -> FastAPI:
    """
    Build the gateway app.

    When `services` is given (tests), it is used as-is and not closed on
    shutdown; otherwise services are built from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services if services is not None else VoiceAgentServices.from_config(get_config())
        app.state.services.log_credential_status()
        logger.info("Voice agent gateway started", path=VOICE_AGENT_PATH)
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            logger.info("Voice agent gateway stopped")

    app = FastAPI(title="Voice Agent Gateway", lifespan=lifespan)
    app.include_router(sessions_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "component": "voice_agent",
            "active_sessions": app.state.services.registry.count(),
        }

    @app.websocket(VOICE_AGENT_PATH)
    async def voice_agent(websocket: WebSocket):
        await websocket.accept()
        session = VoiceAgentSession(websocket, websocket.app.state.services)
        logger.info("Voice agent connection accepted", session_id=session.session_id)

        try:
            while not session.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None:
                    continue
                await session.handle_message(raw)
        except WebSocketDisconnect:
            logger.info("Voice agent client disconnected", session_id=session.session_id)
        finally:
            await session.on_disconnect()

    return app


app = create_app()
