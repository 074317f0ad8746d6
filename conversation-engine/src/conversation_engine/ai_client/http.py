"""
HTTP client for the companion AI service.

'HttpAIClient' implements 'AIClient' against the four form-encoded endpoints of
the AI service:

    POST /chat     username, question      -> {"response": "..."}
    POST /agentic  user_id, username, question
                                          -> {"result": {"reasoning": "...", "response": "..."}}
    POST /topic    user, bot               -> {"response": "..."}
    POST /summary  conv_id                 -> {"response": "..."}

Every failure mode (connection error, timeout, non-2xx status, malformed JSON,
empty payload) is reported as 'AIServiceError'.
"""

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from conversation_engine.ai_client.base import AIClient, AgenticReply
from conversation_engine.config import EngineSettings
from conversation_engine.errors import AIServiceError


class HttpAIClient(AIClient):
    """
    'AIClient' backed by 'httpx.AsyncClient'.

    Attributes:
        settings: Base URL and per-endpoint timeouts.
        client: The underlying async client. Pass one in to share a connection pool
            or to plug in a custom transport; otherwise one is created and owned.
    """

    def __init__(self, settings: EngineSettings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or EngineSettings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.settings.ai_base_url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _post(self, endpoint: str, data: dict[str, str], timeout: float) -> dict[str, Any]:
        try:
            response = await self.client.post(endpoint, data=data, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AIServiceError(f"HTTP {exc.response.status_code} from {endpoint}") from exc
        except httpx.HTTPError as exc:
            raise AIServiceError(f"Request to {endpoint} failed: {exc!r}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise AIServiceError(f"Invalid JSON from {endpoint}: {exc}") from exc
        if not isinstance(payload, dict):
            raise AIServiceError(f"Unexpected payload from {endpoint}: {payload!r}")
        return payload

    @staticmethod
    def _text(payload: dict[str, Any], endpoint: str) -> str:
        text = payload.get("response")
        if not isinstance(text, str) or not text.strip():
            raise AIServiceError(f"Empty response from {endpoint}")
        return text.strip()

    async def reply(self, username: str, question: str) -> str:
        payload = await self._post(
            "/chat", {"username": username, "question": question}, self.settings.chat_timeout
        )
        return self._text(payload, "/chat")

    async def reply_agentic(self, user_id: str, username: str, question: str) -> AgenticReply:
        payload = await self._post(
            "/agentic",
            {"user_id": user_id, "username": username, "question": question},
            self.settings.agentic_timeout,
        )
        result = payload.get("result")
        if not isinstance(result, dict):
            raise AIServiceError("Agentic payload has no 'result' object")
        try:
            reply = AgenticReply(reasoning=result.get("reasoning") or "", response=result.get("response") or "")
        except PydanticValidationError as exc:
            raise AIServiceError(f"Malformed agentic payload: {exc}") from exc
        if not reply.reasoning.strip() and not reply.response.strip():
            raise AIServiceError("Agentic payload is empty")
        logger.debug(f"Agentic reply: {len(reply.reasoning)} reasoning chars, {len(reply.response)} response chars")
        return reply

    async def topic(self, user_text: str, bot_text: str) -> str:
        payload = await self._post("/topic", {"user": user_text, "bot": bot_text}, self.settings.topic_timeout)
        return self._text(payload, "/topic")

    async def summarize(self, conversation_id: str) -> str:
        if not conversation_id.strip():
            raise AIServiceError("Cannot summarize a conversation without an id")
        payload = await self._post("/summary", {"conv_id": conversation_id}, self.settings.summary_timeout)
        return self._text(payload, "/summary")
