"""
Caller-facing callback surface.

The orchestrator never renders anything itself. It pushes state changes to a
'ConversationListener' supplied by the presentation layer. Every method has a
no-op default so a listener only overrides what it displays.
"""

from pydantic import BaseModel

from conversation_engine.conversation_database.data_models.message import Message


class HistoryEntry(BaseModel):
    """One row of the conversation list: the conversation id and its display label."""

    id: str
    label: str


class ConversationListener:
    def on_messages_changed(self, conversation_id: str, messages: list[Message]) -> None:
        """The cached log of the active conversation changed and should be re-rendered."""

    def on_history_changed(self, entries: list[HistoryEntry]) -> None:
        """The user's conversation list changed, newest first."""

    def on_topic_changed(self, conversation_id: str, topic: str) -> None:
        pass

    def on_delete_requested(self, conversation_id: str) -> None:
        """A deletion is pending; the caller should ask for confirmation."""

    def on_error(self, context: str, message: str) -> None:
        pass
