"""
Voice agent configuration.

Loads upstream credentials and tuning from environment variables. Missing
credentials do not raise here: the session manager rejects connections with a
configuration error instead, so the process can still serve health checks.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


def _clean_env(key: str) -> Optional[str]:
    """Read an env var, stripping inline comments and whitespace ("300  # comment" -> "300")."""
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Process-wide persona defaults, used when a voice cannot be resolved.
FALLBACK_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"
FALLBACK_MODEL_ID = "eleven_turbo_v2_5"
DEFAULT_PROMPT = "Give the answer within two lines."
DEFAULT_VOICE_NAME = "krishna1"


@dataclass
class AgentConfig:
    """Voice agent configuration."""

    # Upstream credentials
    deepgram_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None

    # Language model
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    llm_temperature: float = 0.7
    llm_max_tokens: int = 500

    # Speech recognition
    deepgram_model: str = "nova-2"
    deepgram_language: str = "en"
    deepgram_utterance_end_ms: int = 2000

    # Turn taking
    silence_threshold_ms: int = 2000

    # Speech synthesis
    elevenlabs_voice_id: str = FALLBACK_VOICE_ID
    elevenlabs_model_id: str = FALLBACK_MODEL_ID
    elevenlabs_pool_size: int = 10
    elevenlabs_connect_timeout: float = 3.0
    elevenlabs_total_timeout: float = 60.0

    # Personas
    default_voice_name: str = DEFAULT_VOICE_NAME
    default_prompt: str = DEFAULT_PROMPT
    personas_dir: Optional[Path] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load configuration from environment variables."""
        personas_dir = _clean_env("VOICE_PERSONAS_DIR")
        return cls(
            deepgram_api_key=_clean_env("DEEPGRAM_API_KEY"),
            openai_api_key=_clean_env("OPENAI_API_KEY"),
            elevenlabs_api_key=_clean_env("ELEVENLABS_API_KEY"),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=_clean_env("OPENAI_BASE_URL"),
            llm_temperature=_parse_float_env("LLM_TEMPERATURE", 0.7),
            llm_max_tokens=_parse_int_env("LLM_MAX_TOKENS", 500),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "nova-2"),
            deepgram_language=os.environ.get("DEEPGRAM_LANGUAGE", "en"),
            deepgram_utterance_end_ms=_parse_int_env("DEEPGRAM_UTTERANCE_END_MS", 2000),
            silence_threshold_ms=_parse_int_env("VOICE_SILENCE_THRESHOLD_MS", 2000),
            elevenlabs_voice_id=_clean_env("ELEVENLABS_VOICE_ID") or FALLBACK_VOICE_ID,
            elevenlabs_model_id=_clean_env("ELEVENLABS_MODEL_ID") or FALLBACK_MODEL_ID,
            elevenlabs_pool_size=_parse_int_env("ELEVENLABS_CONNECTION_POOL_SIZE", 10),
            elevenlabs_connect_timeout=_parse_float_env("ELEVENLABS_CONNECTION_TIMEOUT", 3.0),
            elevenlabs_total_timeout=_parse_float_env("ELEVENLABS_TOTAL_TIMEOUT", 60.0),
            default_voice_name=_clean_env("DEFAULT_VOICE_NAME") or DEFAULT_VOICE_NAME,
            default_prompt=os.environ.get("DEFAULT_SYSTEM_PROMPT", DEFAULT_PROMPT),
            personas_dir=Path(personas_dir) if personas_dir else None,
            host=os.environ.get("VOICE_AGENT_HOST", "0.0.0.0"),
            port=_parse_int_env("VOICE_AGENT_PORT", 8000),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def missing_credentials(self) -> List[str]:
        """Env var names of upstream credentials that are not configured."""
        missing = []
        if not self.deepgram_api_key:
            missing.append("DEEPGRAM_API_KEY")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        return missing


def get_config() -> AgentConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = AgentConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None


# Global config instance (lazy loaded)
_config: Optional[AgentConfig] = None
