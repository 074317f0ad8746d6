"""
Conversation id assignment.

Engine-assigned conversation ids have the form '<user_id>_cv<NN>' where NN is a
zero-padded sequence number that is unique per user. The next number is one more
than the largest suffix among the ids already known for the user.
"""

import re
from collections.abc import Iterable

CONVERSATION_SUFFIX = re.compile(r"cv(\d+)$")


def conversation_sequence_number(conversation_id: str) -> int:
    """Return the numeric 'cv' suffix of 'conversation_id', or 0 when it has none."""
    match = CONVERSATION_SUFFIX.search(conversation_id)
    return int(match.group(1)) if match else 0


def next_conversation_id(user_id: str, known_ids: Iterable[str]) -> str:
    next_index = max((conversation_sequence_number(cid) for cid in known_ids), default=0) + 1
    return f"{user_id}_cv{next_index:02d}"
