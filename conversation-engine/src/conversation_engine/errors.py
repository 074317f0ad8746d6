"""
Error taxonomy of the conversation engine.

'ValidationError' is raised before any collaborator is contacted (no active user,
unknown conversation). 'StoreError' wraps any failure of a repository call and
'AIServiceError' any failure of an 'AIClient' call. Nothing in the engine retries
automatically; the caller decides whether to repeat an intent.
"""


class ConversationEngineError(Exception):
    """Base class for all errors surfaced by the engine."""


class ValidationError(ConversationEngineError):
    pass


class StoreError(ConversationEngineError):
    pass


class AIServiceError(ConversationEngineError):
    pass
