import logging
from contextlib import asynccontextmanager

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from relay.admin.router import router as admin_router
from relay.buffer.debounce import MessageBuffer
from relay.config import Settings
from relay.conversation.dead_letters import DeadLetterStore
from relay.conversation.store import ConversationStore
from relay.enablement.registry import EnablementRegistry
from relay.health.router import router as health_router
from relay.llm.breaker import CircuitBreaker
from relay.llm.client import AIServiceClient
from relay.llm.gateway import AIGateway
from relay.logging_config import configure_logging
from relay.pipeline.pipeline import Pipeline, PipelineConfig
from relay.startup import drain_for_shutdown, schedule_keep_alive, wait_for_ai_service
from relay.store.redis_client import create_redis, wait_for_redis
from relay.webhook.processor import WebhookProcessor
from relay.webhook.router import router as webhook_router
from relay.whatsapp.client import WhatsAppClient
from relay.whatsapp.delivery import DeliveryService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    configure_logging(level=settings.log_level, json_format=settings.log_json, log_file=settings.log_file)

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_timeout, connect=10.0))

    # Redis
    redis_client = create_redis(settings.redis_url)
    await wait_for_redis(redis_client, attempts=settings.redis_startup_attempts)
    conversation_store = ConversationStore(
        redis_client,
        max_turns=settings.history_max_turns,
        ttl_seconds=settings.history_ttl_seconds,
    )
    dead_letters = DeadLetterStore(redis_client)
    registry = EnablementRegistry(
        redis_client,
        refresh_attempts=settings.enablement_refresh_attempts,
        refresh_backoff=settings.enablement_refresh_backoff,
    )

    # AI backend
    breaker = CircuitBreaker(
        failure_threshold=settings.breaker_failure_threshold,
        min_calls=settings.breaker_min_calls,
        window_seconds=settings.breaker_window,
        buckets=settings.breaker_buckets,
        reset_timeout=settings.breaker_reset_timeout,
    )
    ai_gateway = AIGateway(
        AIServiceClient(
            http_client=http_client,
            service_url=settings.ai_service_url,
            health_url=settings.resolved_ai_health_url,
            system_message=settings.ai_system_message,
            timeout=settings.ai_timeout,
        ),
        breaker,
        fallback_message=settings.ai_fallback_message,
        timeout=settings.ai_timeout,
        check_health=settings.ai_health_check_before_query,
    )
    try:
        await wait_for_ai_service(ai_gateway, attempts=settings.ai_startup_attempts, wait=settings.ai_startup_wait)
    except RuntimeError:
        logger.critical("AI service never became ready, aborting startup")
        await redis_client.aclose()
        await http_client.aclose()
        raise

    # Pipeline and the components feeding it
    pipeline = Pipeline(PipelineConfig.from_settings(settings), ai_gateway, conversation_store, dead_letters)
    delivery = DeliveryService(
        WhatsAppClient(
            http_client=http_client,
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_url=settings.whatsapp_api_url,
        ),
        conversation_store,
        reschedule=pipeline.submit_delivery,
        max_length=settings.whatsapp_max_message_length,
        default_retry_after=settings.whatsapp_default_retry_after,
        max_reschedules=settings.whatsapp_max_rate_limit_reschedules,
    )
    buffer = MessageBuffer(
        registry,
        conversation_store,
        submit=pipeline.submit_processing,
        quiet_period=settings.buffer_quiet_period,
    )
    processor = WebhookProcessor(buffer, registry, delivery, auto_enable_phrases=settings.auto_enable_phrases)
    pipeline.start(intake=processor.process, delivery=delivery)

    scheduler = AsyncIOScheduler()
    scheduler.start()
    await registry.initialize(scheduler, interval_seconds=settings.enablement_refresh_interval)
    if settings.keep_alive_enabled:
        schedule_keep_alive(scheduler, ai_gateway, interval_seconds=settings.keep_alive_interval)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.redis = redis_client
    app.state.registry = registry
    app.state.dead_letters = dead_letters
    app.state.ai_gateway = ai_gateway
    app.state.pipeline = pipeline
    app.state.buffer = buffer
    app.state.scheduler = scheduler

    logger.info("Relay started")

    yield

    await drain_for_shutdown(pipeline, buffer, timeout=30.0)
    await pipeline.stop()
    scheduler.shutdown()
    await redis_client.aclose()
    await http_client.aclose()
    logger.info("Relay stopped")


app = FastAPI(title="WasAP Relay", lifespan=lifespan)
app.include_router(health_router)
app.include_router(webhook_router)
app.include_router(admin_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
