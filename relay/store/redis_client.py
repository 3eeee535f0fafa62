from __future__ import annotations

import asyncio
import logging

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

logger = logging.getLogger(__name__)


def create_redis(redis_url: str, max_connections: int = 50) -> redis.Redis:
    """Build a pooled async Redis client that returns str values."""
    pool = ConnectionPool.from_url(
        redis_url,
        max_connections=max_connections,
        retry_on_timeout=True,
        socket_connect_timeout=10,
        socket_timeout=10,
        health_check_interval=30,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)


async def is_healthy(client: redis.Redis) -> bool:
    try:
        return bool(await client.ping())
    except (redis.RedisError, OSError):
        return False


async def wait_for_redis(client: redis.Redis, attempts: int = 5, base_delay: float = 2.0) -> bool:
    """Ping Redis until it answers, waiting base_delay * attempt between tries."""
    for attempt in range(1, attempts + 1):
        if await is_healthy(client):
            logger.info("Redis connected (attempt %d/%d)", attempt, attempts)
            return True
        if attempt < attempts:
            logger.warning("Redis not reachable, attempt %d/%d", attempt, attempts)
            await asyncio.sleep(base_delay * attempt)
    logger.warning(
        "Redis is not connected. The service will continue, "
        "but history and enablement may not work correctly."
    )
    return False
