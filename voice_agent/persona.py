"""
Persona resolution: voice name -> VoiceProfile.

Personas are stored as YAML files (one per voice) in voice_agent/personas/ or
in VOICE_PERSONAS_DIR. PyYAML's safe_load also parses pure JSON, so .json
persona files work too.

A persona that is missing, inactive, or unreadable resolves to None; callers
fall back to the process-wide defaults from AgentConfig.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

import yaml

from logging_setup import get_logger, Component
from .config import AgentConfig

logger = get_logger(Component.PERSONA)


@dataclass(frozen=True)
class VoiceSettings:
    """ElevenLabs voice tuning parameters."""

    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass(frozen=True)
class VoiceProfile:
    """Immutable persona snapshot captured once per session."""

    name: str
    voice_id: str
    model_id: str
    prompt: str
    settings: VoiceSettings = field(default_factory=VoiceSettings)
    display_name: Optional[str] = None


def default_profile(config: AgentConfig, name: Optional[str] = None) -> VoiceProfile:
    """Profile built from process-wide defaults."""
    return VoiceProfile(
        name=name or config.default_voice_name,
        voice_id=config.elevenlabs_voice_id,
        model_id=config.elevenlabs_model_id,
        prompt=config.default_prompt,
        settings=VoiceSettings(),
        display_name=None,
    )


class PersonaResolver(Protocol):
    """Read-only lookup of voice profiles by name."""

    def resolve(self, voice_name: str) -> Optional[VoiceProfile]:
        ...


def _get_personas_dir() -> Path:
    return Path(__file__).parent / "personas"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Persona file {path} must contain a mapping at top-level")
    return data


def _profile_from_mapping(name: str, data: Dict[str, Any], config: AgentConfig) -> VoiceProfile:
    settings_raw = data.get("voice_settings") or {}
    defaults = VoiceSettings()
    settings = VoiceSettings(
        stability=float(settings_raw.get("stability", defaults.stability)),
        similarity_boost=float(settings_raw.get("similarity_boost", defaults.similarity_boost)),
        style=float(settings_raw.get("style", defaults.style)),
        use_speaker_boost=bool(settings_raw.get("use_speaker_boost", defaults.use_speaker_boost)),
    )
    voice_id = data.get("voice_id")
    if not isinstance(voice_id, str) or not voice_id.strip():
        raise ValueError(f"Persona '{name}' has no voice_id")
    return VoiceProfile(
        name=data.get("name") or name,
        voice_id=voice_id.strip(),
        model_id=data.get("model_id") or config.elevenlabs_model_id,
        prompt=(data.get("prompt") or config.default_prompt).strip(),
        settings=settings,
        display_name=data.get("display_name"),
    )


class YamlPersonaResolver:
    """
    Resolves personas from <dir>/<name>.yaml, .yml or .json.

    Lookups are cached per name; personas are read-only for the life of the
    process.
    """

    def __init__(self, config: AgentConfig, personas_dir: Optional[Path] = None):
        self._config = config
        self._dir = personas_dir or config.personas_dir or _get_personas_dir()
        self._cache: Dict[str, Optional[VoiceProfile]] = {}

    def _candidates(self, voice_name: str) -> Iterable[Path]:
        for suffix in (".yaml", ".yml", ".json"):
            yield self._dir / f"{voice_name}{suffix}"

    def resolve(self, voice_name: str) -> Optional[VoiceProfile]:
        if voice_name in self._cache:
            return self._cache[voice_name]

        profile: Optional[VoiceProfile] = None
        # Reject path-like names; only plain persona identifiers map to files.
        if voice_name and "/" not in voice_name and "\\" not in voice_name and not voice_name.startswith("."):
            for candidate in self._candidates(voice_name):
                if not candidate.exists():
                    continue
                data = _load_file(candidate)
                if not data.get("is_active", True):
                    logger.info("Persona is inactive", voice_name=voice_name)
                    break
                profile = _profile_from_mapping(voice_name, data, self._config)
                break

        self._cache[voice_name] = profile
        return profile


def resolve_voice_profile(
    resolver: PersonaResolver,
    voice_name: str,
    config: AgentConfig,
) -> Tuple[VoiceProfile, bool]:
    """
    Resolve a voice name, falling back to defaults.

    Returns (profile, resolved); resolved is False when the defaults were used.
    """
    try:
        profile = resolver.resolve(voice_name)
    except Exception as e:
        logger.warning(
            "Persona resolution failed, using default voice",
            voice_name=voice_name,
            error=str(e),
            error_type=type(e).__name__,
        )
        return default_profile(config, name=voice_name), False

    if profile is None:
        logger.warning("Voice not found or inactive, falling back to defaults", voice_name=voice_name)
        return default_profile(config, name=voice_name), False

    logger.info(
        "Voice resolved",
        voice_name=voice_name,
        display_name=profile.display_name,
        voice_id=profile.voice_id,
    )
    return profile, True
