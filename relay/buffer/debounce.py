"""Per-user sliding debounce of inbound messages.

Each new message cancels the user's pending flush and schedules a new one a
full quiet period later, so a burst of messages becomes one combined question.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

from relay.conversation.store import ConversationStore
from relay.enablement.registry import EnablementRegistry
from relay.pipeline.models import ProcessingJob

logger = logging.getLogger(__name__)

Submit = Callable[[ProcessingJob], None]
DiscardListener = Callable[[str, list[str]], None]


@dataclass
class UserBuffer:
    user_id: str
    pending_messages: list[str] = field(default_factory=list)
    last_event_timestamp: str = ""
    flush_handle: asyncio.TimerHandle | None = None


class MessageBuffer:
    def __init__(
        self,
        registry: EnablementRegistry,
        conversation_store: ConversationStore,
        submit: Submit,
        quiet_period: float = 5.0,
        on_discard: DiscardListener | None = None,
    ):
        self._registry = registry
        self._history = conversation_store
        self._submit = submit
        self._quiet_period = quiet_period
        self._on_discard = on_discard
        self._buffers: dict[str, UserBuffer] = {}
        self._flushing: set[asyncio.Task] = set()
        self.stats: Counter[str] = Counter()

    def pending_users(self) -> list[str]:
        return list(self._buffers)

    def get(self, user_id: str) -> UserBuffer | None:
        return self._buffers.get(user_id)

    def add_message(self, user_id: str, text: str, timestamp: str) -> None:
        buffer = self._buffers.get(user_id)
        if buffer is None:
            buffer = UserBuffer(user_id=user_id)
            self._buffers[user_id] = buffer
        elif buffer.flush_handle is not None:
            buffer.flush_handle.cancel()

        buffer.pending_messages.append(text)
        buffer.last_event_timestamp = timestamp
        loop = asyncio.get_running_loop()
        buffer.flush_handle = loop.call_later(self._quiet_period, self._fire, user_id)
        logger.debug(
            "Buffered message for %s (buffer size %d)", user_id, len(buffer.pending_messages)
        )

    def _fire(self, user_id: str) -> None:
        buffer = self._buffers.pop(user_id, None)
        if buffer is None:
            return
        task = asyncio.create_task(self._flush(buffer), name=f"flush-{user_id}")
        self._flushing.add(task)
        task.add_done_callback(self._flushing.discard)

    async def _flush(self, buffer: UserBuffer) -> None:
        user_id = buffer.user_id
        if not self._registry.is_enabled(user_id):
            logger.info(
                "Auto-reply disabled for %s, discarding %d buffered messages",
                user_id,
                len(buffer.pending_messages),
            )
            self.stats["discarded"] += 1
            if self._on_discard:
                self._on_discard(user_id, buffer.pending_messages)
            return

        combined = " ".join(buffer.pending_messages)
        logger.info(
            "Flushing buffer for %s with %d messages", user_id, len(buffer.pending_messages)
        )
        try:
            history = await self._history.get_history(user_id)
            self._submit(
                ProcessingJob(user_id=user_id, combined_message=combined, history=history)
            )
            self.stats["flushed"] += 1
        except Exception:
            self.stats["failed"] += 1
            logger.error(
                "Failed to enqueue buffered messages for %s: %s",
                user_id,
                combined[:80],
                exc_info=True,
            )

    async def process_all(self) -> None:
        """Flush every pending buffer now, without waiting for its quiet period."""
        user_ids = list(self._buffers)
        for user_id in user_ids:
            buffer = self._buffers[user_id]
            if buffer.flush_handle is not None:
                buffer.flush_handle.cancel()
            self._fire(user_id)
        if self._flushing:
            await asyncio.gather(*self._flushing, return_exceptions=True)
