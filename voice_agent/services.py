"""
Process-wide collaborators shared by all voice sessions.

Built once at startup (see gateway/server.py lifespan) and injected into every
VoiceAgentSession. Tests build their own instance with fakes.
"""
from dataclasses import dataclass, field
from typing import Optional

from logging_setup import get_logger, Component, mask_secret
from .config import AgentConfig
from .history import HistoryStore, InMemoryHistoryStore
from .llm import LanguageModel, OpenAIChatModel
from .persona import PersonaResolver, YamlPersonaResolver
from .recognition import DeepgramClient, RecognitionClient
from .registry import SessionRegistry
from .synthesis import ElevenLabsClient, SynthesisClient

logger = get_logger(Component.VOICE_AGENT)


@dataclass
class VoiceAgentServices:
    config: AgentConfig
    personas: PersonaResolver
    history: HistoryStore
    recognition: RecognitionClient
    llm: LanguageModel
    synthesis: SynthesisClient
    registry: SessionRegistry = field(default_factory=SessionRegistry)

    @classmethod
    def from_config(cls, config: AgentConfig, history: Optional[HistoryStore] = None) -> "VoiceAgentServices":
        return cls(
            config=config,
            personas=YamlPersonaResolver(config),
            history=history or InMemoryHistoryStore(),
            recognition=DeepgramClient.from_config(config),
            llm=OpenAIChatModel.from_config(config),
            synthesis=ElevenLabsClient.from_config(config),
        )

    def log_credential_status(self) -> None:
        """Startup line with masked upstream keys."""
        config = self.config
        logger.info(
            "API key status",
            deepgram=mask_secret(config.deepgram_api_key),
            openai=mask_secret(config.openai_api_key),
            elevenlabs=mask_secret(config.elevenlabs_api_key),
        )
        missing = config.missing_credentials()
        if missing:
            logger.warning("Voice agent will reject sessions until keys are configured", missing=missing)

    async def aclose(self) -> None:
        """Close pooled upstream connections."""
        for client in (self.recognition, self.llm, self.synthesis):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
