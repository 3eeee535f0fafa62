from __future__ import annotations

import logging

import httpx

from relay.errors import AIError
from relay.models import ConversationTurn

logger = logging.getLogger(__name__)


class AIServiceClient:
    """HTTP client for the RAG answering service."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        service_url: str,
        health_url: str,
        system_message: str | None = None,
        timeout: float = 30.0,
    ):
        self._http = http_client
        self._service_url = service_url
        self._health_url = health_url
        self._system_message = system_message
        self._timeout = timeout

    def _build_payload(
        self, query: str, user_id: str, history: list[ConversationTurn]
    ) -> dict:
        return {
            "query": query,
            "user_id": user_id,
            "history": [t.model_dump() for t in history],
            "system_message": self._system_message,
        }

    async def query(self, query: str, user_id: str, history: list[ConversationTurn]) -> str:
        logger.info("Sending query to AI service for %s: %s", user_id, query[:80])
        try:
            resp = await self._http.post(
                self._service_url,
                json=self._build_payload(query, user_id, history),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise AIError(504, f"AI service timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AIError(503, f"AI service unreachable: {e}") from e

        logger.debug("AI service responded with status %s", resp.status_code)
        if not 200 <= resp.status_code < 300:
            logger.error("AI service error [%s] %s: %s", user_id, resp.status_code, resp.text[:200])
            raise AIError(resp.status_code, f"AI service returned {resp.status_code}")
        return self._extract_answer(resp)

    @staticmethod
    def _extract_answer(resp: httpx.Response) -> str:
        if not resp.content or not resp.content.strip():
            raise AIError(502, "Empty response from AI service")
        try:
            data = resp.json()
        except ValueError as e:
            raise AIError(502, "Invalid response format from AI service") from e
        if not data:
            raise AIError(502, "Empty response from AI service")
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise AIError(502, "Invalid response format from AI service")
        answer = data["response"].strip()
        if not answer:
            raise AIError(502, "Blank response from AI service")
        return answer

    async def is_available(self) -> bool:
        try:
            resp = await self._http.get(self._health_url, timeout=10.0)
            return resp.status_code == 200
        except httpx.HTTPError:
            logger.warning("AI service health check failed", exc_info=True)
            return False
