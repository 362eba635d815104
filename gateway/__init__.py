"""
Gateway: FastAPI host for the voice agent.

- WebSocket /api/voice/agent (one VoiceAgentSession per connection)
- GET /health
- Read-only diagnostics over live sessions and their OBS-00 events
"""
