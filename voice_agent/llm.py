"""
Language model client.

One non-streaming chat completion per turn. The client is created once per
process and shared by all sessions.
"""
import time
from typing import Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from logging_setup import get_logger, Component
from .config import AgentConfig
from .history import ChatTurn

logger = get_logger(Component.LLM)


def build_messages(system_prompt: str, turns: List[ChatTurn]) -> List[Dict[str, str]]:
    """Persona system prompt followed by the full ordered history."""
    messages = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        messages.append({"role": turn.role, "content": turn.text})
    return messages


class LanguageModel(Protocol):
    async def complete(self, messages: List[Dict[str, str]]) -> str:
        ...


class OpenAIChatModel:
    """AsyncOpenAI chat completions wrapper."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 500,
        base_url: Optional[str] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._base_url = base_url
        self._client: Optional[AsyncOpenAI] = None

    @classmethod
    def from_config(cls, config: AgentConfig) -> "OpenAIChatModel":
        return cls(
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            base_url=config.openai_base_url,
        )

    def _get_client(self) -> AsyncOpenAI:
        # Created lazily so a missing key does not fail at import/startup.
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        start = time.perf_counter()
        response = await self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        content = response.choices[0].message.content or ""
        logger.debug(
            "Completion received",
            model=self.model,
            message_count=len(messages),
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        return content.strip()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
