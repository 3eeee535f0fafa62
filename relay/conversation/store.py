from __future__ import annotations

import json
import logging

import redis.asyncio as redis

from relay.models import ConversationTurn

logger = logging.getLogger(__name__)

HISTORY_PREFIX = "history:"
INCOMPLETE_HISTORY = "Conversation history incomplete"


class ConversationStore:
    """Bounded per-user question/answer log kept in a Redis list."""

    def __init__(self, client: redis.Redis, max_turns: int = 6, ttl_seconds: int = 1_209_600):
        if max_turns <= 0 or max_turns % 2:
            raise ValueError("max_turns must be a positive even number")
        self._redis = client
        self._max_turns = max_turns
        self._ttl = ttl_seconds

    @staticmethod
    def key(user_id: str) -> str:
        return f"{HISTORY_PREFIX}{user_id}"

    async def get_history(self, user_id: str) -> list[ConversationTurn]:
        items = await self._redis.lrange(self.key(user_id), 0, -1)
        return [self._parse(user_id, item) for item in items]

    @staticmethod
    def _parse(user_id: str, item: str) -> ConversationTurn:
        try:
            data = json.loads(item)
        except json.JSONDecodeError:
            logger.error("Unparseable history item for %s", user_id)
            return ConversationTurn(role="system", content=INCOMPLETE_HISTORY)
        if (
            isinstance(data, dict)
            and data.get("role") in ("user", "assistant", "system")
            and isinstance(data.get("content"), str)
        ):
            return ConversationTurn(role=data["role"], content=data["content"])
        logger.warning("Invalid history item format for %s", user_id)
        return ConversationTurn(role="system", content=INCOMPLETE_HISTORY)

    async def add_exchange(self, user_id: str, query: str, response: str) -> None:
        """Append a question/answer pair, trim to the cap and renew the expiry."""
        await self.append(
            user_id,
            [
                ConversationTurn(role="user", content=query),
                ConversationTurn(role="assistant", content=response),
            ],
        )

    async def append(self, user_id: str, turns: list[ConversationTurn]) -> None:
        if not turns:
            return
        key = self.key(user_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, *(t.model_dump_json() for t in turns))
            pipe.ltrim(key, -self._max_turns, -1)
            pipe.expire(key, self._ttl)
            await pipe.execute()
        logger.debug("Added %d turns for %s", len(turns), user_id)

    async def last_assistant_turn(self, user_id: str) -> ConversationTurn | None:
        history = await self.get_history(user_id)
        for turn in reversed(history):
            if turn.role == "assistant":
                return turn
        return None

    async def clear(self, user_id: str) -> None:
        await self._redis.delete(self.key(user_id))
