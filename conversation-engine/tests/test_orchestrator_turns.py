import asyncio

import pytest
from conftest import FakeAIClient, RecordingListener

from conversation_engine.ai_client.base import AgenticReply, ReplyMode
from conversation_engine.cache import TYPING_PLACEHOLDER_ID
from conversation_engine.config import EngineSettings, SendLockPolicy
from conversation_engine.conversation_database.data_models.conversation import Conversation
from conversation_engine.conversation_database.data_models.message import Sender
from conversation_engine.conversation_database.in_memory import (
    InMemoryConversationDatabase,
    InMemoryMessageDatabase,
    InMemorySummaryDatabase,
)
from conversation_engine.errors import AIServiceError, StoreError, ValidationError
from conversation_engine.orchestrator import ConversationOrchestrator


class FailingCreateConversationDatabase(InMemoryConversationDatabase):
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        raise RuntimeError("disk full")


@pytest.mark.asyncio
async def test_first_send_creates_conversation_before_the_ai_call(
    orchestrator: ConversationOrchestrator,
    conversation_db: InMemoryConversationDatabase,
    ai_client: FakeAIClient,
    listener: RecordingListener,
) -> None:
    await orchestrator.login("alice")

    produced = await orchestrator.send("  Hello there  ")

    assert orchestrator.current_conversation_id == "alice_cv01"
    assert "alice_cv01" in conversation_db.conversations
    assert ai_client.reply_calls == [("alice", "Hello there")]
    assert produced is not None
    assert [(m.sender, m.text) for m in produced] == [(Sender.USER, "Hello there"), (Sender.BOT, "echo: Hello there")]
    assert listener.histories[-1][0].id == "alice_cv01"
    assert listener.histories[-1][0].label == "Hello there"
    assert not orchestrator.is_awaiting_response


@pytest.mark.asyncio
async def test_new_conversation_id_follows_existing_history(
    orchestrator: ConversationOrchestrator, conversation_db: InMemoryConversationDatabase
) -> None:
    for cid in ("U_cv01", "U_cv03"):
        await conversation_db.create_conversation(Conversation(id=cid, user_id="U", started_at=1))
    await orchestrator.login("U")

    await orchestrator.send("new topic")

    assert orchestrator.current_conversation_id == "U_cv04"


@pytest.mark.asyncio
async def test_plain_turns_keep_store_cache_and_send_order(
    orchestrator: ConversationOrchestrator, message_db: InMemoryMessageDatabase
) -> None:
    await orchestrator.login("alice")
    texts = [f"question {i}" for i in range(5)]

    for text in texts:
        await orchestrator.send(text)
    await orchestrator.wait_for_background_tasks()

    conversation_id = orchestrator.current_conversation_id
    assert conversation_id is not None
    stored = await message_db.get_messages_by_conversation_id(conversation_id)
    cached = orchestrator.cache.messages(conversation_id)
    expected = [t for text in texts for t in (text, f"echo: {text}")]
    assert [m.text for m in stored] == expected
    assert [m.id for m in cached] == [m.id for m in stored]
    assert [m.sent_at for m in stored] == sorted(m.sent_at for m in stored)
    assert len({m.sent_at for m in stored}) == len(stored)


@pytest.mark.asyncio
async def test_agentic_turn_stores_reasoning_before_response(
    orchestrator: ConversationOrchestrator, message_db: InMemoryMessageDatabase, ai_client: FakeAIClient
) -> None:
    await orchestrator.login("alice", username="Alice")

    await orchestrator.send("why?", ReplyMode.AGENTIC)
    await orchestrator.wait_for_background_tasks()

    conversation_id = orchestrator.current_conversation_id
    assert conversation_id is not None
    expected = [(Sender.USER, "why?"), (Sender.REASONING, "think"), (Sender.BOT, "answer")]
    stored = await message_db.get_messages_by_conversation_id(conversation_id)
    assert [(m.sender, m.text) for m in stored] == expected
    assert [(m.sender, m.text) for m in orchestrator.cache.messages(conversation_id)] == expected
    assert ai_client.agentic_calls == [("alice", "Alice", "why?")]
    assert ai_client.topic_calls == [("why?", "answer")]


@pytest.mark.asyncio
async def test_agentic_turn_keeps_empty_reasoning(
    orchestrator: ConversationOrchestrator, message_db: InMemoryMessageDatabase, ai_client: FakeAIClient
) -> None:
    ai_client.agentic_reply = AgenticReply(reasoning="", response="just the answer")
    await orchestrator.login("alice")

    produced = await orchestrator.send("hi", ReplyMode.AGENTIC)

    assert produced is not None
    assert [(m.sender, m.text) for m in produced[1:]] == [(Sender.REASONING, ""), (Sender.BOT, "just the answer")]


@pytest.mark.asyncio
async def test_reply_mode_defaults_to_settings(
    conversation_db: InMemoryConversationDatabase,
    message_db: InMemoryMessageDatabase,
    summary_db: InMemorySummaryDatabase,
    ai_client: FakeAIClient,
) -> None:
    orchestrator = ConversationOrchestrator(
        conversation_db, message_db, summary_db, ai_client, settings=EngineSettings(reply_mode=ReplyMode.AGENTIC)
    )
    await orchestrator.login("alice")

    await orchestrator.send("hi")

    assert len(ai_client.agentic_calls) == 1
    assert ai_client.reply_calls == []


@pytest.mark.asyncio
async def test_placeholder_shown_while_awaiting_reply(
    orchestrator: ConversationOrchestrator, ai_client: FakeAIClient, listener: RecordingListener
) -> None:
    gate = asyncio.Event()
    ai_client.reply_gates["slow"] = gate
    await orchestrator.login("alice")

    turn = asyncio.create_task(orchestrator.send("slow"))
    await asyncio.sleep(0)

    conversation_id = orchestrator.current_conversation_id
    assert conversation_id is not None
    assert orchestrator.is_awaiting_response
    assert orchestrator.cache.messages(conversation_id)[-1].id == TYPING_PLACEHOLDER_ID
    assert listener.renders[-1][1][-1].text is None

    gate.set()
    await turn

    assert TYPING_PLACEHOLDER_ID not in [m.id for m in orchestrator.cache.messages(conversation_id)]
    assert [m.text for m in listener.renders[-1][1]] == ["slow", "echo: slow"]


@pytest.mark.asyncio
async def test_failed_reply_removes_placeholder_and_persists_nothing(
    orchestrator: ConversationOrchestrator,
    message_db: InMemoryMessageDatabase,
    ai_client: FakeAIClient,
    listener: RecordingListener,
) -> None:
    ai_client.reply_error = AIServiceError("HTTP 500 from /chat")
    await orchestrator.login("alice")

    with pytest.raises(AIServiceError):
        await orchestrator.send("hello")
    await orchestrator.wait_for_background_tasks()

    conversation_id = orchestrator.current_conversation_id
    assert conversation_id is not None
    stored = await message_db.get_messages_by_conversation_id(conversation_id)
    assert [m.sender for m in stored] == [Sender.USER]
    assert [m.text for m in orchestrator.cache.messages(conversation_id)] == ["hello"]
    assert listener.errors == [("reply", "HTTP 500 from /chat")]
    assert not orchestrator.is_awaiting_response
    assert ai_client.topic_calls == []

    ai_client.reply_error = None
    assert await orchestrator.send("hello again") is not None


@pytest.mark.asyncio
async def test_unexpected_client_exception_is_wrapped(
    orchestrator: ConversationOrchestrator, ai_client: FakeAIClient
) -> None:
    ai_client.reply_error = ConnectionResetError("peer went away")
    await orchestrator.login("alice")

    with pytest.raises(AIServiceError) as excinfo:
        await orchestrator.send("hello")

    assert isinstance(excinfo.value.__cause__, ConnectionResetError)


@pytest.mark.asyncio
async def test_empty_and_busy_sends_are_no_ops(orchestrator: ConversationOrchestrator, ai_client: FakeAIClient) -> None:
    gate = asyncio.Event()
    ai_client.reply_gates["first"] = gate
    await orchestrator.login("alice")

    assert await orchestrator.send("   ") is None
    first = asyncio.create_task(orchestrator.send("first"))
    await asyncio.sleep(0)
    assert await orchestrator.send("second") is None

    gate.set()
    await first
    assert [q for _, q in ai_client.reply_calls] == ["first"]


@pytest.mark.asyncio
async def test_send_without_login_is_rejected(orchestrator: ConversationOrchestrator, ai_client: FakeAIClient) -> None:
    with pytest.raises(ValidationError):
        await orchestrator.send("hello")
    assert ai_client.reply_calls == []


@pytest.mark.asyncio
async def test_failed_conversation_creation_rolls_back_reservation(
    message_db: InMemoryMessageDatabase,
    summary_db: InMemorySummaryDatabase,
    ai_client: FakeAIClient,
    listener: RecordingListener,
) -> None:
    orchestrator = ConversationOrchestrator(
        FailingCreateConversationDatabase(), message_db, summary_db, ai_client, listener=listener
    )
    await orchestrator.login("alice")

    with pytest.raises(StoreError):
        await orchestrator.send("hello")

    assert orchestrator.current_conversation_id is None
    assert orchestrator.known_conversation_ids == []
    assert message_db.messages == {}
    assert ai_client.reply_calls == []
    assert listener.errors[-1][0] == "store"
    assert not orchestrator.is_awaiting_response


@pytest.mark.asyncio
async def test_turn_result_lands_in_its_own_conversation_after_switch(
    orchestrator: ConversationOrchestrator, ai_client: FakeAIClient, listener: RecordingListener
) -> None:
    await orchestrator.login("alice")
    await orchestrator.send("first conversation")
    first_id = orchestrator.current_conversation_id
    orchestrator.new_chat()
    await orchestrator.send("second conversation")
    second_id = orchestrator.current_conversation_id
    await orchestrator.wait_for_background_tasks()

    await orchestrator.open_conversation(first_id)
    gate = asyncio.Event()
    ai_client.reply_gates["slow"] = gate
    turn = asyncio.create_task(orchestrator.send("slow"))
    await asyncio.sleep(0)

    await orchestrator.open_conversation(second_id)
    assert orchestrator.cache.messages(first_id)[-1].id == TYPING_PLACEHOLDER_ID
    renders_before = len(listener.renders)

    gate.set()
    await turn

    assert [m.text for m in orchestrator.cache.messages(first_id)][-2:] == ["slow", "echo: slow"]
    assert [m.text for m in orchestrator.cache.messages(second_id)] == ["second conversation", "echo: second conversation"]
    assert all(cid != first_id for cid, _ in listener.renders[renders_before:])


@pytest.mark.asyncio
async def test_concurrent_turns_in_different_conversations(
    conversation_db: InMemoryConversationDatabase,
    message_db: InMemoryMessageDatabase,
    summary_db: InMemorySummaryDatabase,
    ai_client: FakeAIClient,
) -> None:
    orchestrator = ConversationOrchestrator(
        conversation_db,
        message_db,
        summary_db,
        ai_client,
        settings=EngineSettings(send_lock=SendLockPolicy.PER_CONVERSATION),
    )
    await orchestrator.login("alice")
    gate_a = asyncio.Event()
    ai_client.reply_gates["to A"] = gate_a

    turn_a = asyncio.create_task(orchestrator.send("to A"))
    await asyncio.sleep(0)
    conversation_a = orchestrator.current_conversation_id

    orchestrator.new_chat()
    produced_b = await orchestrator.send("to B")
    conversation_b = orchestrator.current_conversation_id

    assert produced_b is not None
    assert conversation_a != conversation_b
    assert orchestrator.cache.messages(conversation_a)[-1].id == TYPING_PLACEHOLDER_ID
    assert [m.text for m in orchestrator.cache.messages(conversation_b)] == ["to B", "echo: to B"]

    gate_a.set()
    await turn_a
    await orchestrator.wait_for_background_tasks()

    assert [m.text for m in orchestrator.cache.messages(conversation_a)] == ["to A", "echo: to A"]
    assert [m.text for m in orchestrator.cache.messages(conversation_b)] == ["to B", "echo: to B"]
    assert [m.text for m in await message_db.get_messages_by_conversation_id(conversation_a)] == ["to A", "echo: to A"]


@pytest.mark.asyncio
async def test_per_conversation_lock_still_blocks_same_conversation(
    conversation_db: InMemoryConversationDatabase,
    message_db: InMemoryMessageDatabase,
    summary_db: InMemorySummaryDatabase,
    ai_client: FakeAIClient,
) -> None:
    orchestrator = ConversationOrchestrator(
        conversation_db,
        message_db,
        summary_db,
        ai_client,
        settings=EngineSettings(send_lock=SendLockPolicy.PER_CONVERSATION),
    )
    await orchestrator.login("alice")
    gate = asyncio.Event()
    ai_client.reply_gates["slow"] = gate

    turn = asyncio.create_task(orchestrator.send("slow"))
    await asyncio.sleep(0)
    assert await orchestrator.send("again") is None

    gate.set()
    await turn
