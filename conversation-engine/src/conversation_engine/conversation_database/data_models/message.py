"""
Message data model and storage interface.

Messages form a flat, chronologically ordered log within a conversation. A turn
produces a 'USER' message followed by a 'BOT' message, optionally preceded by a
'REASONING' message when the agentic reply mode is used.

The 'MessageDatabase' ABC is the pluggable storage backend. Messages are never
updated; they are removed only together with their conversation.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel


class Sender(StrEnum):
    """Author of a message as stored in the 'sender' column."""

    USER = "user"
    BOT = "bot"
    REASONING = "reasoning"


class Message(BaseModel):
    """
    A single message within a conversation.

    'text' is None only for the typing placeholder kept in the message cache,
    which is never written to a 'MessageDatabase'.
    """

    id: str
    conversation_id: str
    sender: Sender
    text: str | None
    sent_at: int


class MessageDatabase(ABC):
    """Abstract repository for 'Message' records."""

    @abstractmethod
    async def create_message(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        """Return all messages of the conversation ordered by 'sent_at' ascending."""
        pass

    @abstractmethod
    async def delete_messages_by_conversation_id(self, conversation_id: str) -> int:
        pass
