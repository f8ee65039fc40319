from __future__ import annotations

import pytest

from openassist.errors import CapabilityFailure, ValidationFailure
from openassist.services.chat import GENERAL_SYSTEM_PROMPT, WELCOME_MESSAGE, ChatConfig, ChatService

from conftest import ScriptedChatBackend


@pytest.mark.asyncio
async def test_initialize_seeds_history_with_welcome():
    service = ChatService(ScriptedChatBackend())
    welcome = await service.initialize("s1")
    assert welcome.content == WELCOME_MESSAGE
    assert service.history("s1") == [welcome]


@pytest.mark.asyncio
async def test_send_message_includes_history_and_records_exchange():
    backend = ScriptedChatBackend("hi!")
    service = ChatService(backend, ChatConfig(temperature=0.2))

    await service.send_message("s1", "first")
    reply = await service.send_message("s1", "second")

    assert reply.role == "assistant"
    assert reply.content == "hi!"
    assert reply.token_usage.total_tokens == 15
    sent = backend.calls[-1]
    assert sent[0] == {"role": "system", "content": GENERAL_SYSTEM_PROMPT}
    assert [turn["content"] for turn in sent[1:]] == ["first", "hi!", "second"]
    assert [message.role for message in service.history("s1")] == ["user", "assistant", "user", "assistant"]


@pytest.mark.asyncio
async def test_failed_completion_leaves_history_untouched():
    service = ChatService(ScriptedChatBackend(fail=True))
    with pytest.raises(CapabilityFailure):
        await service.send_message("s1", "hello")
    assert service.history("s1") == []


@pytest.mark.asyncio
async def test_blank_message_is_rejected():
    with pytest.raises(ValidationFailure):
        await ChatService(ScriptedChatBackend()).send_message("s1", "  ")


@pytest.mark.asyncio
async def test_stream_yields_chunks_then_complete():
    service = ChatService(ScriptedChatBackend("one two"))

    events = [event async for event in service.stream_message("s1", "hello")]

    assert [event.type for event in events] == ["chunk", "chunk", "complete"]
    assert "".join(event.content for event in events[:-1]) == "one two "
    assert events[-1].message.content == "one two "
    assert {event.message_id for event in events} == {events[-1].message.message_id}
    assert len(service.history("s1")) == 2


@pytest.mark.asyncio
async def test_stream_failure_emits_error_event():
    service = ChatService(ScriptedChatBackend(fail=True))

    events = [event async for event in service.stream_message("s1", "hello")]

    assert [event.type for event in events] == ["error"]
    assert "upstream unavailable" in events[0].error
    assert service.history("s1") == []


@pytest.mark.asyncio
async def test_histories_are_isolated_and_clearable():
    service = ChatService(ScriptedChatBackend())
    await service.send_message("s1", "hello")
    await service.send_message("s2", "hello")

    service.clear_history("s1")

    assert service.history("s1") == []
    assert len(service.history("s2")) == 2
