from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from relay.buffer.debounce import MessageBuffer
from relay.llm.gateway import AIGateway
from relay.pipeline.pipeline import Pipeline

logger = logging.getLogger(__name__)

KEEP_ALIVE_JOB_ID = "ai-keep-alive"


async def wait_for_ai_service(gateway: AIGateway, attempts: int = 5, wait: float = 10.0) -> None:
    """Poll the AI health endpoint, waiting wait * attempt between tries.

    Raises RuntimeError when the service never answers; the relay is useless
    without it.
    """
    for attempt in range(1, attempts + 1):
        if await gateway.is_available():
            logger.info("AI service ready (attempt %d)", attempt)
            return
        if attempt < attempts:
            delay = wait * attempt
            logger.warning("AI service not ready (attempt %d/%d), retrying in %.0fs", attempt, attempts, delay)
            await asyncio.sleep(delay)
    raise RuntimeError(f"AI service unavailable after {attempts} attempts")


async def _keep_alive(gateway: AIGateway) -> None:
    if await gateway.is_available():
        logger.debug("AI keep-alive ping ok")
    else:
        logger.warning("AI keep-alive ping failed")


def schedule_keep_alive(scheduler: AsyncIOScheduler, gateway: AIGateway, interval_seconds: int = 600) -> None:
    scheduler.add_job(
        _keep_alive,
        "interval",
        seconds=interval_seconds,
        args=[gateway],
        id=KEEP_ALIVE_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("AI keep-alive scheduled every %ds", interval_seconds)


async def drain_for_shutdown(pipeline: Pipeline, buffer: MessageBuffer, timeout: float = 30.0) -> None:
    """Flush in-flight work in dependency order before the workers stop.

    Webhook intake feeds the buffer and the buffer feeds processing; each
    step is emptied before the one it writes into.
    """
    if not await pipeline.webhook_queue.join(timeout=timeout):
        logger.warning(
            "Webhook queue still has %d jobs after %.1fs", pipeline.webhook_queue.pending, timeout
        )
    await buffer.process_all()
    await pipeline.drain(timeout=timeout)
    leftover = buffer.pending_users()
    if leftover:
        logger.warning("Shutting down with %d unflushed buffers: %s", len(leftover), ", ".join(leftover))
