"""
Engine configuration.

'EngineSettings' holds every tunable of the engine with defaults matching a
locally running AI service. 'EngineSettings.from_env()' overlays values from
'CONVERSATION_ENGINE_*' environment variables, e.g.:

    CONVERSATION_ENGINE_AI_BASE_URL=http://ai-host:1204 \\
    CONVERSATION_ENGINE_REPLY_MODE=agentic \\
    CHAT_USER=alice python -m conversation_engine.console

Timeouts are in seconds and bound the corresponding 'HttpAIClient' request.
Topic and summary timeouts additionally bound the background tasks in the
orchestrator so a hanging service can never keep a dedup flag set forever.
"""

import os
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from conversation_engine.ai_client.base import ReplyMode

ENV_PREFIX = "CONVERSATION_ENGINE_"


class SendLockPolicy(StrEnum):
    """
    How 'send' is gated while a turn is outstanding.

    GLOBAL allows a single outstanding turn across all conversations (one active
    chat screen). PER_CONVERSATION allows one outstanding turn per conversation id.
    """

    GLOBAL = "global"
    PER_CONVERSATION = "per_conversation"


class EngineSettings(BaseModel):
    ai_base_url: str = "http://localhost:1204"
    chat_timeout: float = Field(default=30.0, gt=0)
    agentic_timeout: float = Field(default=120.0, gt=0)
    topic_timeout: float = Field(default=15.0, gt=0)
    summary_timeout: float = Field(default=20.0, gt=0)
    reply_mode: ReplyMode = ReplyMode.PLAIN
    send_lock: SendLockPolicy = SendLockPolicy.GLOBAL
    snippet_max_length: int = Field(default=20, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EngineSettings":
        """Build settings from 'CONVERSATION_ENGINE_*' variables, falling back to defaults.

        Raises ValueError naming the offending variable when a value does not parse.
        """
        environ = dict(os.environ) if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ and environ[key].strip():
                values[name] = environ[key].strip()
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            bad = ", ".join(f"{ENV_PREFIX}{str(err['loc'][0]).upper()}" for err in exc.errors())
            raise ValueError(f"Invalid engine configuration in {bad}: {exc}") from exc
