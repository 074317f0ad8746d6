"""
Conversation orchestration engine.

Keeps per-user conversations consistent between an in-memory cache and a
persistent store while sequencing calls to an AI service for replies, titles and
summaries:

    from conversation_engine import ConversationOrchestrator, EngineSettings
    from conversation_engine.ai_client.http import HttpAIClient
    from conversation_engine.conversation_database.in_memory import (
        InMemoryConversationDatabase, InMemoryMessageDatabase, InMemorySummaryDatabase,
    )
"""

from conversation_engine.ai_client.base import AIClient, AgenticReply, ReplyMode
from conversation_engine.cache import TYPING_PLACEHOLDER_ID, ConversationSession, MessageCache
from conversation_engine.config import EngineSettings, SendLockPolicy
from conversation_engine.errors import AIServiceError, ConversationEngineError, StoreError, ValidationError
from conversation_engine.listener import ConversationListener, HistoryEntry
from conversation_engine.orchestrator import ConversationOrchestrator, DeleteState

__all__ = [
    "TYPING_PLACEHOLDER_ID",
    "AIClient",
    "AIServiceError",
    "AgenticReply",
    "ConversationEngineError",
    "ConversationListener",
    "ConversationOrchestrator",
    "ConversationSession",
    "DeleteState",
    "EngineSettings",
    "HistoryEntry",
    "MessageCache",
    "ReplyMode",
    "SendLockPolicy",
    "StoreError",
    "ValidationError",
]
