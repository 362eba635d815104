"""
Entry point for running the voice agent gateway.

Usage:
    python -m gateway

Host, port and log level come from VOICE_AGENT_HOST, VOICE_AGENT_PORT and
LOG_LEVEL.
"""
import uvicorn

from logging_setup import setup_logging
from voice_agent.config import get_config

if __name__ == "__main__":
    # server import loads .env files before config is read
    from gateway.server import app

    config = get_config()
    setup_logging(level=config.log_level, use_json=True)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
