"""The three chained stages: webhook intake -> AI processing -> reply delivery.

A job never moves between queues; each stage hands its result to the next
one by submitting a new job, so retry budgets stay independent.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from relay.pipeline.models import (
    Backoff,
    DeliveryJob,
    ProcessingJob,
    RetryPolicy,
    Stage,
    WebhookJob,
)
from relay.pipeline.queue import JobQueue

if TYPE_CHECKING:
    from relay.config import Settings
    from relay.conversation.dead_letters import DeadLetterStore
    from relay.conversation.store import ConversationStore
    from relay.llm.gateway import AIGateway
    from relay.whatsapp.delivery import DeliveryService

logger = logging.getLogger(__name__)

IntakeHandler = Callable[[dict], Awaitable[None]]
DeliveredListener = Callable[[DeliveryJob], Awaitable[None]]


@dataclass(frozen=True)
class StageConfig:
    concurrency: int
    retry: RetryPolicy


@dataclass(frozen=True)
class PipelineConfig:
    webhook: StageConfig
    processing: StageConfig
    delivery: StageConfig
    apology: RetryPolicy
    apology_message: str

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            webhook=StageConfig(
                concurrency=settings.webhook_concurrency,
                retry=RetryPolicy(settings.webhook_max_attempts, Backoff.EXPONENTIAL, settings.webhook_backoff),
            ),
            processing=StageConfig(
                concurrency=settings.processing_concurrency,
                retry=RetryPolicy(
                    settings.processing_max_attempts, Backoff.EXPONENTIAL, settings.processing_backoff
                ),
            ),
            delivery=StageConfig(
                concurrency=settings.delivery_concurrency,
                retry=RetryPolicy(settings.delivery_max_attempts, Backoff.EXPONENTIAL, settings.delivery_backoff),
            ),
            apology=RetryPolicy(settings.apology_max_attempts, Backoff.FIXED, settings.apology_backoff),
            apology_message=settings.apology_message,
        )


class Pipeline:
    def __init__(
        self,
        config: PipelineConfig,
        ai_gateway: AIGateway,
        conversation_store: ConversationStore,
        dead_letters: DeadLetterStore,
    ):
        self._config = config
        self._ai = ai_gateway
        self._history = conversation_store
        self._dead_letters = dead_letters
        self._intake: IntakeHandler | None = None
        self._delivery: DeliveryService | None = None
        self._delivered_listeners: list[DeliveredListener] = []

        self.webhook_queue: JobQueue[WebhookJob] = JobQueue(
            Stage.WEBHOOK,
            self._handle_webhook,
            config.webhook.concurrency,
            on_exhausted=self._webhook_exhausted,
        )
        self.processing_queue: JobQueue[ProcessingJob] = JobQueue(
            Stage.PROCESSING,
            self._handle_processing,
            config.processing.concurrency,
            on_exhausted=self._processing_exhausted,
        )
        self.delivery_queue: JobQueue[DeliveryJob] = JobQueue(
            Stage.DELIVERY,
            self._handle_delivery,
            config.delivery.concurrency,
            on_exhausted=self._delivery_exhausted,
            on_completed=self._delivery_completed,
        )

    @property
    def queues(self) -> tuple[JobQueue, ...]:
        return (self.webhook_queue, self.processing_queue, self.delivery_queue)

    def start(self, intake: IntakeHandler, delivery: DeliveryService) -> None:
        self._intake = intake
        self._delivery = delivery
        for queue in self.queues:
            queue.start()

    async def stop(self) -> None:
        for queue in self.queues:
            await queue.stop()

    async def drain(self, timeout: float = 30.0) -> bool:
        """Wait for every stage to run dry, upstream first."""
        for queue in self.queues:
            if not await queue.join(timeout=timeout):
                logger.warning("Queue %s still has %d jobs after %.1fs", queue.name, queue.pending, timeout)
                return False
        return True

    def on_delivered(self, listener: DeliveredListener) -> None:
        self._delivered_listeners.append(listener)

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            queue.name: {**queue.stats, "pending": queue.pending} for queue in self.queues
        }

    # --- submission ---

    def submit_webhook(self, payload: dict) -> None:
        self.webhook_queue.submit(WebhookJob(payload, retry=self._config.webhook.retry))

    def submit_processing(self, job: ProcessingJob) -> None:
        job.retry = self._config.processing.retry
        self.processing_queue.submit(job)

    def submit_delivery(self, job: DeliveryJob, delay: float = 0.0) -> None:
        self.delivery_queue.submit(job, delay=delay)

    def submit_reply(self, user_id: str, text: str) -> None:
        self.submit_delivery(DeliveryJob(user_id, text, retry=self._config.delivery.retry))

    # --- stage handlers ---

    async def _handle_webhook(self, job: WebhookJob) -> None:
        if self._intake is None:
            raise RuntimeError("Pipeline not started")
        await self._intake(job.raw_payload)

    async def _webhook_exhausted(self, job: WebhookJob, error: Exception) -> None:
        # WhatsApp redelivers webhooks that were not processed; nothing to keep.
        logger.error("Dropping webhook payload after %d attempts: %s", job.attempts_made, error)

    async def _handle_processing(self, job: ProcessingJob) -> None:
        answer = await self._ai.query(job.combined_message, job.user_id, job.history)
        if not answer.fallback:
            try:
                await self._history.add_exchange(job.user_id, job.combined_message, answer.response_text)
            except Exception:
                logger.error("Failed to store conversation for %s", job.user_id, exc_info=True)
        self.submit_reply(job.user_id, answer.response_text)

    async def _processing_exhausted(self, job: ProcessingJob, error: Exception) -> None:
        logger.error(
            "Critical processing failure for %s after %d attempts, sending apology",
            job.user_id,
            job.attempts_made,
        )
        self.submit_delivery(
            DeliveryJob(job.user_id, self._config.apology_message, retry=self._config.apology)
        )

    async def _handle_delivery(self, job: DeliveryJob) -> None:
        if self._delivery is None:
            raise RuntimeError("Pipeline not started")
        await self._delivery.send(
            job.user_id, job.response_text, reschedules=job.reschedules, retry=job.retry
        )

    async def _delivery_completed(self, job: DeliveryJob) -> None:
        logger.info("Reply delivered to %s after %d attempt(s)", job.user_id, job.attempts_made)
        for listener in self._delivered_listeners:
            try:
                await listener(job)
            except Exception:
                logger.exception("Delivered listener failed")

    async def _delivery_exhausted(self, job: DeliveryJob, error: Exception) -> None:
        logger.critical(
            "Message not delivered to %s after %d attempts: %s",
            job.user_id,
            job.attempts_made,
            job.response_text[:80],
        )
        try:
            await self._dead_letters.add(job.user_id, job.response_text, str(error))
        except Exception:
            logger.critical(
                "Could not dead-letter reply for %s: %s",
                job.user_id,
                job.response_text,
                exc_info=True,
            )
