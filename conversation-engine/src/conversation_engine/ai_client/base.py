"""
AI service abstractions.

The orchestrator talks to the generative backend exclusively through the
'AIClient' ABC. It bundles four independent operations: a plain reply, an agentic
reply that also returns the model's reasoning trace, topic naming for a
conversation title, and summarization of a stored conversation.

Implementations signal any failure (transport, timeout, empty or malformed
payload) by raising 'AIServiceError'. Timeouts are the implementation's
responsibility; the engine never retries.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel


class ReplyMode(StrEnum):
    """Which reply operation a turn uses."""

    PLAIN = "plain"
    AGENTIC = "agentic"


class AgenticReply(BaseModel):
    """Result of an agentic turn. 'reasoning' may be empty, it is stored anyway."""

    reasoning: str = ""
    response: str = ""


class AIClient(ABC):
    """
    Abstract base class for the generative backend.

    Concrete implementations adapt a specific transport (HTTP service, local
    model, test double) to this interface.
    """

    @abstractmethod
    async def reply(self, username: str, question: str) -> str:
        """Return the assistant's answer to 'question'."""
        pass

    @abstractmethod
    async def reply_agentic(self, user_id: str, username: str, question: str) -> AgenticReply:
        """Return the assistant's reasoning trace together with its final answer."""
        pass

    @abstractmethod
    async def topic(self, user_text: str, bot_text: str) -> str:
        """Return a short title for the exchange 'user_text' -> 'bot_text'."""
        pass

    @abstractmethod
    async def summarize(self, conversation_id: str) -> str:
        """Return a digest of the stored conversation 'conversation_id'."""
        pass
