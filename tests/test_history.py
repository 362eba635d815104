"""
Tests for conversation history.
"""
import pytest

from voice_agent.history import ChatTurn, InMemoryHistoryStore, is_new_chat


def test_is_new_chat():
    assert is_new_chat(None)
    assert is_new_chat("")
    assert is_new_chat("new")
    assert not is_new_chat("chat_123")


def test_chat_turn_role_validation():
    ChatTurn(role="user", text="hi")
    ChatTurn(role="assistant", text="hello")
    with pytest.raises(ValueError):
        ChatTurn(role="system", text="nope")


@pytest.mark.asyncio
async def test_new_chat_is_created_with_title():
    store = InMemoryHistoryStore()
    conversation = await store.load_or_create("new", "user_1")

    assert conversation.chat_id != "new"
    assert conversation.title == "Voice Agent Chat"
    assert conversation.user_id == "user_1"
    assert conversation.turns == []


@pytest.mark.asyncio
async def test_missing_chat_id_creates_new_chat():
    store = InMemoryHistoryStore()
    first = await store.load_or_create(None, "user_1")
    second = await store.load_or_create(None, "user_1")
    assert first.chat_id != second.chat_id


@pytest.mark.asyncio
async def test_append_and_reload_keeps_order():
    store = InMemoryHistoryStore()
    conversation = await store.load_or_create("new", "user_1")

    await store.append(conversation.chat_id, ChatTurn("user", "What does today hold for me?"))
    await store.append(conversation.chat_id, ChatTurn("assistant", "Peace and clarity."))

    reloaded = await store.load_or_create(conversation.chat_id, "user_1")
    assert [t.role for t in reloaded.turns] == ["user", "assistant"]
    assert reloaded.turns[1].text == "Peace and clarity."


@pytest.mark.asyncio
async def test_loaded_conversation_is_a_copy():
    store = InMemoryHistoryStore()
    conversation = await store.load_or_create("new", None)
    conversation.turns.append(ChatTurn("user", "local only"))

    assert store.get(conversation.chat_id).turns == []


@pytest.mark.asyncio
async def test_unknown_explicit_chat_id_gets_a_fresh_id():
    store = InMemoryHistoryStore()
    conversation = await store.load_or_create("chat_abc", "user_1")

    assert conversation.chat_id != "chat_abc"
    assert conversation.turns == []
    assert store.get("chat_abc") is None
    assert store.get(conversation.chat_id) is not None


@pytest.mark.asyncio
async def test_chat_of_another_user_is_not_loaded():
    store = InMemoryHistoryStore()
    owned = await store.load_or_create("new", "user_1")
    await store.append(owned.chat_id, ChatTurn("user", "Something private"))

    other = await store.load_or_create(owned.chat_id, "user_2")

    assert other.chat_id != owned.chat_id
    assert other.user_id == "user_2"
    assert other.turns == []
    assert len(store.get(owned.chat_id).turns) == 1


@pytest.mark.asyncio
async def test_anonymous_caller_cannot_load_owned_chat():
    store = InMemoryHistoryStore()
    owned = await store.load_or_create("new", "user_1")

    other = await store.load_or_create(owned.chat_id, None)

    assert other.chat_id != owned.chat_id


@pytest.mark.asyncio
async def test_append_to_unknown_chat_raises():
    store = InMemoryHistoryStore()
    with pytest.raises(KeyError):
        await store.append("missing", ChatTurn("user", "hi"))
