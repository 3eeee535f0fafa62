from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from relay.buffer.debounce import MessageBuffer
from relay.config import Settings
from relay.llm.gateway import AIResponse
from relay.main import app, lifespan
from relay.pipeline.pipeline import Pipeline, PipelineConfig
from relay.startup import KEEP_ALIVE_JOB_ID, drain_for_shutdown, schedule_keep_alive, wait_for_ai_service
from relay.store.redis_client import wait_for_redis
from tests.conftest import TEST_SETTINGS


async def test_ai_ready_first_try():
    gateway = MagicMock()
    gateway.is_available = AsyncMock(return_value=True)

    await wait_for_ai_service(gateway, attempts=3, wait=0)

    gateway.is_available.assert_awaited_once()


async def test_ai_waits_linearly_between_attempts():
    gateway = MagicMock()
    gateway.is_available = AsyncMock(side_effect=[False, False, True])

    with patch("relay.startup.asyncio.sleep", new=AsyncMock()) as sleep:
        await wait_for_ai_service(gateway, attempts=5, wait=10)

    assert [call.args[0] for call in sleep.await_args_list] == [10, 20]


async def test_ai_never_ready_is_fatal():
    gateway = MagicMock()
    gateway.is_available = AsyncMock(return_value=False)

    with pytest.raises(RuntimeError):
        await wait_for_ai_service(gateway, attempts=2, wait=0)
    assert gateway.is_available.await_count == 2


def test_schedule_keep_alive():
    scheduler = MagicMock()

    schedule_keep_alive(scheduler, MagicMock(), interval_seconds=120)

    kwargs = scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == KEEP_ALIVE_JOB_ID
    assert kwargs["seconds"] == 120


async def test_redis_unreachable_is_not_fatal():
    client = MagicMock()
    client.ping = AsyncMock(side_effect=ConnectionError("refused"))

    assert await wait_for_redis(client, attempts=2, base_delay=0) is False
    assert client.ping.await_count == 2


async def test_redis_reachable(redis_client):
    assert await wait_for_redis(redis_client, attempts=1) is True


def test_settings_parse_phrase_list(monkeypatch):
    monkeypatch.setenv("AUTO_ENABLE_PHRASES", "talk to the bot, start assistant ,")

    settings = Settings(
        whatsapp_access_token="t",
        whatsapp_phone_number_id="1",
        whatsapp_verify_token="v",
    )

    assert settings.auto_enable_phrases == ["talk to the bot", "start assistant"]


def test_health_url_derived_from_query_url():
    settings = Settings(
        whatsapp_access_token="t",
        whatsapp_phone_number_id="1",
        whatsapp_verify_token="v",
        ai_service_url="https://ai.example.com/rag/query",
    )
    assert settings.resolved_ai_health_url == "https://ai.example.com/health/ready"

    explicit = settings.model_copy(update={"ai_health_url": "https://ai.example.com/ping"})
    assert explicit.resolved_ai_health_url == "https://ai.example.com/ping"


async def test_shutdown_flushes_messages_still_in_webhook_queue(caplog):
    ai_gateway = MagicMock()
    ai_gateway.query = AsyncMock(return_value=AIResponse("The answer"))
    history = MagicMock()
    history.get_history = AsyncMock(return_value=[])
    history.add_exchange = AsyncMock()
    registry = MagicMock()
    registry.is_enabled = MagicMock(return_value=True)
    delivery = MagicMock()
    delivery.send = AsyncMock()

    pipeline = Pipeline(PipelineConfig.from_settings(TEST_SETTINGS), ai_gateway, history, MagicMock())
    buffer = MessageBuffer(registry, history, submit=pipeline.submit_processing, quiet_period=60)

    async def _intake(payload):
        buffer.add_message(payload["from"], payload["text"], "1")

    pipeline.start(intake=_intake, delivery=delivery)
    pipeline.submit_webhook({"from": "123", "text": "Hello"})

    await drain_for_shutdown(pipeline, buffer, timeout=2)
    await pipeline.stop()

    assert buffer.pending_users() == []
    ai_gateway.query.assert_awaited_once_with("Hello", "123", [])
    delivery.send.assert_awaited_once()
    assert "unflushed buffers" not in caplog.text


async def test_shutdown_reports_buffers_left_behind(caplog):
    pipeline = MagicMock()
    pipeline.webhook_queue.join = AsyncMock(return_value=True)
    pipeline.drain = AsyncMock(return_value=True)
    buffer = MagicMock()
    buffer.process_all = AsyncMock()
    buffer.pending_users = MagicMock(return_value=["123"])

    await drain_for_shutdown(pipeline, buffer, timeout=1)

    assert "Shutting down with 1 unflushed buffers: 123" in caplog.text


async def test_ai_never_ready_closes_clients():
    http_client = MagicMock()
    http_client.aclose = AsyncMock()
    redis_client = MagicMock()
    redis_client.aclose = AsyncMock()

    with (
        patch("relay.main.Settings", return_value=TEST_SETTINGS),
        patch("relay.main.configure_logging"),
        patch("relay.main.httpx.AsyncClient", return_value=http_client),
        patch("relay.main.create_redis", return_value=redis_client),
        patch("relay.main.wait_for_redis", new=AsyncMock(return_value=True)),
        patch("relay.main.wait_for_ai_service", new=AsyncMock(side_effect=RuntimeError("AI down"))),
    ):
        with pytest.raises(RuntimeError, match="AI down"):
            async with lifespan(app):
                pass

    redis_client.aclose.assert_awaited_once()
    http_client.aclose.assert_awaited_once()
