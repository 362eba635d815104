"""
OBS-00 observability for the voice agent.

Structured JSON events written to stdout and kept in a bounded in-memory store
so the Gateway's diagnostics API can query them per session.
"""
