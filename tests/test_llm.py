"""
Tests for the OpenAI chat model wrapper.
"""
from types import SimpleNamespace

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from fakes import make_config
from voice_agent.history import ChatTurn
from voice_agent.llm import OpenAIChatModel, build_messages


def test_build_messages_orders_system_then_history():
    turns = [ChatTurn("user", "Hi"), ChatTurn("assistant", "Hello."), ChatTurn("user", "How are you?")]

    messages = build_messages("Give the answer within two lines.", turns)

    assert messages == [
        {"role": "system", "content": "Give the answer within two lines."},
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello."},
        {"role": "user", "content": "How are you?"},
    ]


def test_from_config():
    model = OpenAIChatModel.from_config(make_config(openai_model="gpt-4o", llm_temperature=0.2, llm_max_tokens=120))
    assert model.model == "gpt-4o"
    assert model.temperature == 0.2
    assert model.max_tokens == 120


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _with_fake_client(model: OpenAIChatModel, content):
    completions = _FakeCompletions(content)
    model._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return completions


@pytest.mark.asyncio
async def test_complete_strips_and_passes_parameters():
    model = OpenAIChatModel(api_key="sk-test", model="gpt-4o-mini", temperature=0.7, max_tokens=500)
    completions = _with_fake_client(model, "  Breathe deeply.\n")

    reply = await model.complete([{"role": "user", "content": "hi"}])

    assert reply == "Breathe deeply."
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["temperature"] == 0.7
    assert completions.kwargs["max_tokens"] == 500


@pytest.mark.asyncio
async def test_complete_with_null_content_returns_empty():
    model = OpenAIChatModel(api_key="sk-test")
    _with_fake_client(model, None)
    assert await model.complete([{"role": "user", "content": "hi"}]) == ""


@pytest.mark.asyncio
async def test_complete_against_http_endpoint():
    received = []

    async def handler(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "gpt-4o-mini",
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": "Today holds calm."},
                "finish_reason": "stop",
            }],
        })

    app = web.Application()
    app.router.add_post("/v1/chat/completions", handler)

    async with TestServer(app) as server:
        model = OpenAIChatModel(api_key="sk-test", base_url=str(server.make_url("/v1")))
        try:
            reply = await model.complete([{"role": "system", "content": "Be brief."}])
        finally:
            await model.aclose()

    assert reply == "Today holds calm."
    assert received[0]["messages"] == [{"role": "system", "content": "Be brief."}]
    assert received[0]["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_aclose_without_client_is_noop():
    model = OpenAIChatModel(api_key=None)
    await model.aclose()
    assert model._client is None
