"""
Summary data model and storage interface.

Summaries are free-text digests of a conversation produced by the summarization
service. They are append-only: every time the number of completed user/bot pairs
reaches a new even threshold a new row is added, older rows are kept.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Summary(BaseModel):
    """A digest of a conversation at a given point in time."""

    id: str
    conversation_id: str
    text: str
    created_at: int


class SummaryDatabase(ABC):
    """Abstract repository for 'Summary' records."""

    @abstractmethod
    async def create_summary(self, summary: Summary) -> Summary:
        pass

    @abstractmethod
    async def get_summaries_by_conversation_id(self, conversation_id: str) -> list[Summary]:
        pass

    @abstractmethod
    async def delete_summaries_by_conversation_id(self, conversation_id: str) -> int:
        pass
