"""Which users currently accept automated replies.

The persisted list in Redis is the source of truth; lookups are served from an
in-memory mirror that is refreshed on an interval and eagerly on every
enable/disable. Until the first load succeeds every user reads as disabled.
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)

ENABLED_USERS_KEY = "enabled_users"
REFRESH_JOB_ID = "enablement-refresh"


class EnablementRegistry:
    def __init__(
        self,
        client: redis.Redis,
        refresh_attempts: int = 3,
        refresh_backoff: float = 1.0,
    ):
        self._redis = client
        self._refresh_attempts = refresh_attempts
        self._refresh_backoff = refresh_backoff
        self._cache: set[str] = set()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def is_enabled(self, user_id: str) -> bool:
        return self._loaded and user_id in self._cache

    def list_enabled(self) -> set[str]:
        if not self._loaded:
            return set()
        return set(self._cache)

    async def enable(self, user_ids: list[str]) -> None:
        """Append the ids missing from the persisted list in one WATCHed transaction."""
        user_ids = _dedupe(user_ids)
        if not user_ids:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(ENABLED_USERS_KEY)
                    stored = set(await pipe.lrange(ENABLED_USERS_KEY, 0, -1))
                    missing = [u for u in user_ids if u not in stored]
                    if not missing:
                        await pipe.reset()
                        break
                    pipe.multi()
                    pipe.rpush(ENABLED_USERS_KEY, *missing)
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug("enabled_users changed during enable, retrying")
        self._cache.update(user_ids)
        for user_id in user_ids:
            logger.info("Auto-reply enabled for %s", user_id)

    async def disable(self, user_ids: list[str]) -> None:
        user_ids = _dedupe(user_ids)
        if not user_ids:
            return
        for user_id in user_ids:
            self._cache.discard(user_id)
            await self._redis.lrem(ENABLED_USERS_KEY, 0, user_id)
            logger.info("Auto-reply disabled for %s", user_id)

    async def load(self) -> None:
        """Replace the cache with the persisted list. Raises on store errors."""
        users = await self._redis.lrange(ENABLED_USERS_KEY, 0, -1)
        self._cache = set(users)
        self._loaded = True
        logger.debug("Enablement cache loaded (%d users)", len(self._cache))

    async def refresh(self) -> bool:
        """Reload with increasing backoff; keep the stale cache if every attempt fails."""
        for attempt in range(1, self._refresh_attempts + 1):
            try:
                await self.load()
                return True
            except Exception:
                if attempt == self._refresh_attempts:
                    logger.error(
                        "Enablement refresh failed after %d attempts, keeping %s cache",
                        attempt,
                        "stale" if self._loaded else "empty",
                        exc_info=True,
                    )
                    return False
                delay = self._refresh_backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Enablement refresh attempt %d/%d failed, retrying in %.1fs",
                    attempt,
                    self._refresh_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
        return False

    async def initialize(self, scheduler: AsyncIOScheduler, interval_seconds: int = 300) -> None:
        await self.refresh()
        scheduler.add_job(
            self.refresh,
            "interval",
            seconds=interval_seconds,
            id=REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Enablement registry initialized (loaded=%s, refresh every %ds)",
            self._loaded,
            interval_seconds,
        )


def _dedupe(user_ids: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for user_id in user_ids:
        user_id = user_id.strip()
        if user_id:
            seen.setdefault(user_id, None)
    return list(seen)
