from __future__ import annotations

import logging
from datetime import UTC, datetime

import redis.asyncio as redis

from relay.models import DeadLetterRecord

logger = logging.getLogger(__name__)

DEAD_LETTERS_KEY = "dead-letters"


class DeadLetterStore:
    def __init__(self, client: redis.Redis):
        self._redis = client

    async def add(self, user_id: str, response_text: str, failure_reason: str) -> DeadLetterRecord:
        record = DeadLetterRecord(
            user_id=user_id,
            response_text=response_text,
            failure_reason=failure_reason,
            failed_at=datetime.now(UTC).isoformat(),
        )
        await self._redis.rpush(DEAD_LETTERS_KEY, record.model_dump_json())
        logger.error(
            "Dead-lettered reply for %s (%s): %s",
            user_id,
            failure_reason,
            response_text[:80],
        )
        return record

    async def recent(self, limit: int = 100) -> list[DeadLetterRecord]:
        items = await self._redis.lrange(DEAD_LETTERS_KEY, -limit, -1)
        records = []
        for item in items:
            try:
                records.append(DeadLetterRecord.model_validate_json(item))
            except ValueError:
                logger.warning("Skipping malformed dead-letter record")
        return records
