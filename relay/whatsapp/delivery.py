"""Final hop of the pipeline: hand a reply to WhatsApp.

Rate limiting (429) is not a failure here: the same text is re-submitted as a
new delayed delivery job and the current job ends with DeliveryRescheduled.
Other 4xx responses are terminal; 5xx and transport errors are retryable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from relay.conversation.store import ConversationStore
from relay.errors import DeliveryError, DeliveryRescheduled
from relay.pipeline.models import DeliveryJob, RetryPolicy
from relay.whatsapp.client import WhatsAppClient

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

Rescheduler = Callable[[DeliveryJob, float], None]


def truncate(text: str, max_length: int = 4096) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def parse_retry_after(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


class DeliveryService:
    def __init__(
        self,
        wa_client: WhatsAppClient,
        conversation_store: ConversationStore,
        reschedule: Rescheduler,
        max_length: int = 4096,
        default_retry_after: float = 60.0,
        max_reschedules: int = 3,
    ):
        self._wa = wa_client
        self._history = conversation_store
        self._reschedule = reschedule
        self._max_length = max_length
        self._default_retry_after = default_retry_after
        self._max_reschedules = max_reschedules

    async def send(
        self,
        recipient_id: str,
        text: str,
        reschedules: int = 0,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Send one text. A rescheduled 429 follow-up keeps the caller's retry policy."""
        body = truncate(text, self._max_length)
        logger.info("Sending message to %s: %s", recipient_id, body[:50])
        try:
            result = await self._wa.send_text(recipient_id, body)
        except httpx.TimeoutException as e:
            raise DeliveryError(504, f"WhatsApp API timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(503, f"WhatsApp API unreachable: {e}") from e

        if result.ok:
            logger.debug("WhatsApp API response status: %s", result.status_code)
            return

        if result.status_code == 429:
            delay = parse_retry_after(result.retry_after, self._default_retry_after)
            if reschedules < self._max_reschedules:
                self._reschedule(
                    DeliveryJob(
                        recipient_id,
                        text,
                        reschedules=reschedules + 1,
                        retry=retry or RetryPolicy(),
                    ),
                    delay,
                )
                logger.warning(
                    "WhatsApp rate limit for %s, re-enqueued in %.0fs (%d/%d)",
                    recipient_id,
                    delay,
                    reschedules + 1,
                    self._max_reschedules,
                )
                raise DeliveryRescheduled(recipient_id, delay)
            raise DeliveryError(429, "Rate limit exceeded, reschedule budget spent")

        if 400 <= result.status_code < 500:
            logger.error(
                "WhatsApp rejected message [%s] %s: text=%r body=%s",
                recipient_id,
                result.status_code,
                body[:80],
                result.body[:500],
            )
            raise DeliveryError(result.status_code, result.body[:200], retryable=False)

        logger.error("WhatsApp API error [%s] %s: %s", recipient_id, result.status_code, result.body[:200])
        raise DeliveryError(result.status_code, result.body[:200])

    async def resend_last_reply(self, recipient_id: str) -> bool:
        """Best-effort single resend of the latest assistant turn in history."""
        try:
            turn = await self._history.last_assistant_turn(recipient_id)
            if turn is None:
                logger.info("No assistant reply in history to resend for %s", recipient_id)
                return False
            logger.info("Resending last reply to %s after failed delivery", recipient_id)
            await self.send(recipient_id, turn.content, reschedules=self._max_reschedules)
            return True
        except Exception:
            logger.error("Resend to %s failed", recipient_id, exc_info=True)
            return False
