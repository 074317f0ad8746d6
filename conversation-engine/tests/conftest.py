import asyncio

import pytest

from conversation_engine.ai_client.base import AIClient, AgenticReply
from conversation_engine.config import EngineSettings
from conversation_engine.conversation_database.data_models.message import Message
from conversation_engine.conversation_database.in_memory import (
    InMemoryConversationDatabase,
    InMemoryMessageDatabase,
    InMemorySummaryDatabase,
)
from conversation_engine.listener import ConversationListener, HistoryEntry
from conversation_engine.orchestrator import ConversationOrchestrator


class FakeAIClient(AIClient):
    """
    Scripted AI client.

    Replies echo the question unless 'reply_text' is set. Setting one of the
    '*_gate' events makes the matching call wait until the test sets the event,
    and the '*_error' attributes make the matching call fail.
    """

    def __init__(self) -> None:
        self.reply_text: str | None = None
        self.agentic_reply = AgenticReply(reasoning="think", response="answer")
        self.topic_text = "Weekend plans"
        self.summary_text = "A short digest"
        self.reply_error: Exception | None = None
        self.topic_error: Exception | None = None
        self.summary_error: Exception | None = None
        self.reply_gates: dict[str, asyncio.Event] = {}
        self.topic_gate: asyncio.Event | None = None
        self.summary_gate: asyncio.Event | None = None
        self.reply_calls: list[tuple[str, str]] = []
        self.agentic_calls: list[tuple[str, str, str]] = []
        self.topic_calls: list[tuple[str, str]] = []
        self.summary_calls: list[str] = []

    async def reply(self, username: str, question: str) -> str:
        self.reply_calls.append((username, question))
        if question in self.reply_gates:
            await self.reply_gates[question].wait()
        if self.reply_error is not None:
            raise self.reply_error
        return self.reply_text if self.reply_text is not None else f"echo: {question}"

    async def reply_agentic(self, user_id: str, username: str, question: str) -> AgenticReply:
        self.agentic_calls.append((user_id, username, question))
        if self.reply_error is not None:
            raise self.reply_error
        return self.agentic_reply

    async def topic(self, user_text: str, bot_text: str) -> str:
        self.topic_calls.append((user_text, bot_text))
        if self.topic_gate is not None:
            await self.topic_gate.wait()
        if self.topic_error is not None:
            raise self.topic_error
        return self.topic_text

    async def summarize(self, conversation_id: str) -> str:
        self.summary_calls.append(conversation_id)
        if self.summary_gate is not None:
            await self.summary_gate.wait()
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary_text


class RecordingListener(ConversationListener):
    def __init__(self) -> None:
        self.renders: list[tuple[str, list[Message]]] = []
        self.histories: list[list[HistoryEntry]] = []
        self.topics: list[tuple[str, str]] = []
        self.delete_requests: list[str] = []
        self.errors: list[tuple[str, str]] = []

    def on_messages_changed(self, conversation_id: str, messages: list[Message]) -> None:
        self.renders.append((conversation_id, messages))

    def on_history_changed(self, entries: list[HistoryEntry]) -> None:
        self.histories.append(entries)

    def on_topic_changed(self, conversation_id: str, topic: str) -> None:
        self.topics.append((conversation_id, topic))

    def on_delete_requested(self, conversation_id: str) -> None:
        self.delete_requests.append(conversation_id)

    def on_error(self, context: str, message: str) -> None:
        self.errors.append((context, message))


@pytest.fixture
def conversation_db() -> InMemoryConversationDatabase:
    return InMemoryConversationDatabase()


@pytest.fixture
def message_db() -> InMemoryMessageDatabase:
    return InMemoryMessageDatabase()


@pytest.fixture
def summary_db() -> InMemorySummaryDatabase:
    return InMemorySummaryDatabase()


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(topic_timeout=1.0, summary_timeout=1.0)


@pytest.fixture
def orchestrator(
    conversation_db: InMemoryConversationDatabase,
    message_db: InMemoryMessageDatabase,
    summary_db: InMemorySummaryDatabase,
    ai_client: FakeAIClient,
    listener: RecordingListener,
    settings: EngineSettings,
) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        conversation_db=conversation_db,
        message_db=message_db,
        summary_db=summary_db,
        ai_client=ai_client,
        listener=listener,
        settings=settings,
    )
