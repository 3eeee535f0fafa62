from unittest.mock import AsyncMock, MagicMock

import pytest

from relay.webhook.processor import WebhookProcessor
from tests.conftest import make_status_payload, make_whatsapp_payload


@pytest.fixture
def buffer() -> MagicMock:
    return MagicMock()


@pytest.fixture
def registry() -> MagicMock:
    registry = MagicMock()
    registry.is_enabled = MagicMock(return_value=False)
    registry.enable = AsyncMock()
    return registry


@pytest.fixture
def delivery() -> MagicMock:
    service = MagicMock()
    service.resend_last_reply = AsyncMock(return_value=True)
    return service


@pytest.fixture
def processor(buffer, registry, delivery) -> WebhookProcessor:
    return WebhookProcessor(buffer, registry, delivery, auto_enable_phrases=["Talk to the bot"])


async def test_text_message_buffered(processor, buffer, registry):
    await processor.process(make_whatsapp_payload(text="Hola"))

    buffer.add_message.assert_called_once_with("5491112345678", "Hola", "1700000000")
    registry.enable.assert_not_awaited()


async def test_trigger_phrase_enables_sender(processor, buffer, registry):
    await processor.process(make_whatsapp_payload(text="Hi, I want to TALK TO THE BOT please"))

    registry.enable.assert_awaited_once_with(["5491112345678"])
    buffer.add_message.assert_called_once()


async def test_trigger_phrase_for_enabled_user(processor, registry):
    registry.is_enabled.return_value = True

    await processor.process(make_whatsapp_payload(text="talk to the bot"))

    registry.enable.assert_not_awaited()


async def test_failed_status_resends_last_reply(processor, buffer, delivery):
    await processor.process(make_status_payload(recipient_id="111", status="failed"))

    delivery.resend_last_reply.assert_awaited_once_with("111")
    buffer.add_message.assert_not_called()


async def test_delivered_status_ignored(processor, delivery):
    await processor.process(make_status_payload(status="delivered"))

    delivery.resend_last_reply.assert_not_awaited()


async def test_non_whatsapp_object_ignored(processor, buffer):
    payload = make_whatsapp_payload()
    payload["object"] = "instagram"

    await processor.process(payload)

    buffer.add_message.assert_not_called()


async def test_media_without_text_ignored(processor, buffer):
    await processor.process(make_whatsapp_payload(msg_type="audio"))

    buffer.add_message.assert_not_called()


def test_is_trigger(processor):
    assert processor.is_trigger("please talk to the bot")
    assert not processor.is_trigger("talk to a human")
    assert not WebhookProcessor(MagicMock(), MagicMock(), MagicMock()).is_trigger("anything")
