from __future__ import annotations

import logging

from relay.buffer.debounce import MessageBuffer
from relay.enablement.registry import EnablementRegistry
from relay.webhook.parser import WHATSAPP_OBJECT, extract_messages, extract_statuses
from relay.whatsapp.delivery import DeliveryService

logger = logging.getLogger(__name__)

FAILED_STATUSES = frozenset({"failed", "unable_to_deliver"})


class WebhookProcessor:
    """Turns a raw webhook payload into buffer input and failed-delivery resends."""

    def __init__(
        self,
        buffer: MessageBuffer,
        registry: EnablementRegistry,
        delivery: DeliveryService,
        auto_enable_phrases: list[str] | None = None,
    ):
        self._buffer = buffer
        self._registry = registry
        self._delivery = delivery
        self._phrases = [p.casefold() for p in auto_enable_phrases or []]

    def is_trigger(self, text: str) -> bool:
        folded = text.casefold()
        return any(phrase in folded for phrase in self._phrases)

    async def process(self, payload: dict) -> None:
        if payload.get("object") != WHATSAPP_OBJECT:
            logger.warning("Received non-WhatsApp webhook: %s", payload.get("object"))
            return

        for status in extract_statuses(payload):
            if status.status in FAILED_STATUSES:
                logger.warning(
                    "Delivery of %s to %s reported %s",
                    status.message_id,
                    status.recipient_id,
                    status.status,
                )
                await self._delivery.resend_last_reply(status.recipient_id)

        for msg in extract_messages(payload):
            logger.info(
                "Received message from %s: %s%s",
                msg.from_number,
                msg.text[:50],
                "..." if len(msg.text) > 50 else "",
            )
            if self.is_trigger(msg.text) and not self._registry.is_enabled(msg.from_number):
                await self._registry.enable([msg.from_number])
            self._buffer.add_message(msg.from_number, msg.text, msg.timestamp)
