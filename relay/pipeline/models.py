"""Job payloads for the three pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from relay.models import ConversationTurn


class Stage(StrEnum):
    WEBHOOK = "webhook"
    PROCESSING = "processing"
    DELIVERY = "delivery"


class Backoff(StrEnum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: Backoff = Backoff.EXPONENTIAL
    delay: float = 1.0  # seconds; base delay for exponential backoff

    def delay_for(self, attempts_made: int) -> float:
        """Wait before the next attempt, given how many attempts already ran."""
        if self.backoff is Backoff.FIXED:
            return self.delay
        return self.delay * 2 ** max(attempts_made - 1, 0)


@dataclass
class Job:
    retry: RetryPolicy = field(default_factory=RetryPolicy, kw_only=True)
    attempts_made: int = field(default=0, kw_only=True)

    stage: Stage = field(init=False)

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.retry.max_attempts

    def describe(self) -> str:
        return self.stage.value


@dataclass
class WebhookJob(Job):
    raw_payload: dict
    stage: Stage = field(default=Stage.WEBHOOK, init=False)


@dataclass
class ProcessingJob(Job):
    user_id: str
    combined_message: str
    history: list[ConversationTurn] = field(default_factory=list)
    stage: Stage = field(default=Stage.PROCESSING, init=False)

    def describe(self) -> str:
        return f"processing[{self.user_id}] {self.combined_message[:50]!r}"


@dataclass
class DeliveryJob(Job):
    user_id: str
    response_text: str
    reschedules: int = 0  # 429-driven re-submissions of this same content
    stage: Stage = field(default=Stage.DELIVERY, init=False)

    def describe(self) -> str:
        return f"delivery[{self.user_id}] {self.response_text[:50]!r}"
