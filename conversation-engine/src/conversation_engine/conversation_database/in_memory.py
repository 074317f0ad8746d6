"""
In-memory repositories.

Process-local implementations of the conversation, message and summary
repositories. They are used by the console entry point and the test-suite and
follow the same contract as any persistent backend: records are copied on the way
in and out so callers can never mutate stored state by reference.
"""

from conversation_engine.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from conversation_engine.conversation_database.data_models.message import Message, MessageDatabase
from conversation_engine.conversation_database.data_models.summary import Summary, SummaryDatabase


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        if conversation.id in self.conversations:
            raise ValueError(f"Conversation with id {conversation.id} already exists")
        self.conversations[conversation.id] = conversation.model_copy()
        return conversation.model_copy()

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        owned = [c for c in self.conversations.values() if c.user_id == user_id]
        return [c.id for c in sorted(owned, key=lambda c: c.started_at, reverse=True)]

    async def get_title(self, conversation_id: str) -> str | None:
        conversation = self.conversations.get(conversation_id)
        return conversation.title if conversation else None

    async def set_title(self, conversation_id: str, title: str) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ValueError(f"Conversation with id {conversation_id} not found")
        self.conversations[conversation_id] = conversation.model_copy(update={"title": title})

    async def delete_conversation(self, conversation_id: str) -> bool:
        return self.conversations.pop(conversation_id, None) is not None

    async def delete_conversations_by_user_id(self, user_id: str) -> int:
        doomed = [c.id for c in self.conversations.values() if c.user_id == user_id]
        for conversation_id in doomed:
            del self.conversations[conversation_id]
        return len(doomed)


class InMemoryMessageDatabase(MessageDatabase):
    def __init__(self) -> None:
        self.messages: dict[str, list[Message]] = {}

    async def create_message(self, message: Message) -> Message:
        if message.text is None:
            raise ValueError("Messages without text cannot be stored")
        self.messages.setdefault(message.conversation_id, []).append(message.model_copy())
        return message.model_copy()

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        stored = self.messages.get(conversation_id, [])
        # sorted() is stable, so messages sharing a timestamp keep insertion order
        return [m.model_copy() for m in sorted(stored, key=lambda m: m.sent_at)]

    async def delete_messages_by_conversation_id(self, conversation_id: str) -> int:
        return len(self.messages.pop(conversation_id, []))


class InMemorySummaryDatabase(SummaryDatabase):
    def __init__(self) -> None:
        self.summaries: dict[str, list[Summary]] = {}

    async def create_summary(self, summary: Summary) -> Summary:
        self.summaries.setdefault(summary.conversation_id, []).append(summary.model_copy())
        return summary.model_copy()

    async def get_summaries_by_conversation_id(self, conversation_id: str) -> list[Summary]:
        return [s.model_copy() for s in self.summaries.get(conversation_id, [])]

    async def delete_summaries_by_conversation_id(self, conversation_id: str) -> int:
        return len(self.summaries.pop(conversation_id, []))
