"""
Real-time voice agent orchestrator.

One WebSocket session bridges:
    client audio -> speech recognition -> turn detection
    -> LLM turn processing -> streaming speech synthesis -> client audio

Per-session wiring lives in session.py; the upstream clients (Deepgram,
OpenAI, ElevenLabs) are built once per process and injected.
"""
