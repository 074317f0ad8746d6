"""
Per-conversation message cache.

'MessageCache' is the orchestrator's single source of truth for what a
conversation currently looks like. Each conversation id maps to a
'ConversationSession' holding the ordered message log the caller renders plus the
bookkeeping used to deduplicate topic and summary requests.

The cache performs no I/O. It is owned exclusively by one orchestrator and is
keyed by conversation id, so turns running for different conversations never
touch each other's entries.
"""

from collections.abc import Sequence

from pydantic import BaseModel, Field

from conversation_engine.conversation_database.data_models.message import Message, Sender

TYPING_PLACEHOLDER_ID = "__typing__"


def make_typing_placeholder(conversation_id: str, sent_at: int) -> Message:
    return Message(id=TYPING_PLACEHOLDER_ID, conversation_id=conversation_id, sender=Sender.BOT, text=None, sent_at=sent_at)


def is_typing_placeholder(message: Message) -> bool:
    return message.id == TYPING_PLACEHOLDER_ID and message.text is None


def count_completed_pairs(messages: Sequence[Message]) -> int:
    """
    Count completed user -> bot exchanges in chronological order.

    A 'USER' message opens a pair and the next 'BOT' message closes it. Reasoning
    messages and the typing placeholder are ignored, as are bot messages that do
    not follow an open user message.
    """
    pairs = 0
    waiting_for_bot = False
    for message in messages:
        if is_typing_placeholder(message) or message.sender == Sender.REASONING:
            continue
        if message.sender == Sender.USER:
            waiting_for_bot = True
        elif message.sender == Sender.BOT and waiting_for_bot:
            pairs += 1
            waiting_for_bot = False
    return pairs


class ConversationSession(BaseModel):
    """
    Cached state of one conversation.

    Attributes:
        messages: The ordered message log, possibly ending with a typing placeholder.
        is_typing: True while a typing placeholder is in the log.
        topic: The conversation title once known.
        topic_requested: True while a topic request is outstanding.
        last_summarized_pair_count: Pair count at which the last summary was requested.
    """

    messages: list[Message] = Field(default_factory=list)
    is_typing: bool = False
    topic: str | None = None
    topic_requested: bool = False
    last_summarized_pair_count: int = 0


class MessageCache:
    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    def session(self, conversation_id: str) -> ConversationSession:
        """Return the session entry for 'conversation_id', creating it on first access."""
        if conversation_id not in self._sessions:
            self._sessions[conversation_id] = ConversationSession()
        return self._sessions[conversation_id]

    def messages(self, conversation_id: str) -> list[Message]:
        entry = self._sessions.get(conversation_id)
        return list(entry.messages) if entry else []

    def last_sent_at(self, conversation_id: str) -> int | None:
        entry = self._sessions.get(conversation_id)
        stamps = [m.sent_at for m in entry.messages if not is_typing_placeholder(m)] if entry else []
        return max(stamps) if stamps else None

    def load(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Replace the cached log with 'messages', keeping an in-flight typing placeholder."""
        entry = self.session(conversation_id)
        placeholder = next((m for m in entry.messages if is_typing_placeholder(m)), None)
        entry.messages = [m for m in messages if not is_typing_placeholder(m)]
        if placeholder is not None:
            entry.messages.append(placeholder)

    def append(self, conversation_id: str, message: Message) -> None:
        self.session(conversation_id).messages.append(message)

    def insert_placeholder(self, conversation_id: str, sent_at: int) -> None:
        entry = self.session(conversation_id)
        if not entry.is_typing:
            entry.messages.append(make_typing_placeholder(conversation_id, sent_at))
            entry.is_typing = True

    def remove_placeholder(self, conversation_id: str) -> None:
        entry = self._sessions.get(conversation_id)
        if entry is None:
            return
        entry.messages = [m for m in entry.messages if not is_typing_placeholder(m)]
        entry.is_typing = False

    def clear(self, conversation_id: str) -> None:
        self._sessions.pop(conversation_id, None)

    def clear_all(self) -> None:
        self._sessions.clear()
