from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from relay.errors import AIError
from relay.llm.breaker import BreakerState, CircuitBreaker, CircuitOpenError
from relay.llm.client import AIServiceClient
from relay.models import ConversationTurn

logger = logging.getLogger(__name__)


@dataclass
class AIResponse:
    response_text: str
    fallback: bool = False


class AIGateway:
    """Breaker-guarded access to the AI service with a fixed fallback answer."""

    def __init__(
        self,
        client: AIServiceClient,
        breaker: CircuitBreaker,
        fallback_message: str,
        timeout: float = 30.0,
        check_health: bool = False,
    ):
        self._client = client
        self._breaker = breaker
        self._fallback_message = fallback_message
        self._timeout = timeout
        self._check_health = check_health

    @property
    def breaker_state(self) -> BreakerState:
        return self._breaker.state

    async def query(
        self, text: str, user_id: str, history: list[ConversationTurn]
    ) -> AIResponse:
        try:
            answer = await self._breaker.call(lambda: self._guarded_query(text, user_id, history))
        except CircuitOpenError:
            logger.warning("AI circuit open, answering %s with fallback", user_id)
            return AIResponse(response_text=self._fallback_message, fallback=True)
        return AIResponse(response_text=answer)

    async def _guarded_query(
        self, text: str, user_id: str, history: list[ConversationTurn]
    ) -> str:
        if self._check_health and not await self._client.is_available():
            raise AIError(503, "AI service is currently unavailable")
        try:
            return await asyncio.wait_for(
                self._client.query(text, user_id, history), timeout=self._timeout
            )
        except TimeoutError as e:
            raise AIError(504, f"AI service did not answer within {self._timeout:.0f}s") from e

    async def is_available(self) -> bool:
        return await self._client.is_available()
