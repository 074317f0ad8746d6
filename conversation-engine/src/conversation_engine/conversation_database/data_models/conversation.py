"""
Conversation data model and storage interface.

The 'ConversationDatabase' ABC is the pluggable storage backend for conversation
records. Implementations are interchangeable at construction time, keeping the
orchestrator free of storage-specific code. Every method is a single atomic call
from the orchestrator's point of view; dependent writes are sequenced by the caller.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Conversation(BaseModel):
    """
    A single conversation owned by a user.

    'title' starts as None and is set once a topic has been generated. It is the
    only field that changes after creation.
    """

    id: str
    user_id: str
    started_at: int
    title: str | None = None


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        """Return the user's conversation ids, most recently started first."""
        pass

    @abstractmethod
    async def get_title(self, conversation_id: str) -> str | None:
        pass

    @abstractmethod
    async def set_title(self, conversation_id: str, title: str) -> None:
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_conversations_by_user_id(self, user_id: str) -> int:
        """Delete every conversation of 'user_id' and return how many were removed."""
        pass
