"""Process-wide circuit breaker for the AI backend.

closed: calls pass through; outcomes are counted in a rolling window split
into buckets. When at least ``min_calls`` outcomes are in the window and the
failure rate reaches ``failure_threshold`` the breaker opens.

open: calls are rejected without touching the network until
``reset_timeout`` has elapsed, then the breaker goes half-open.

half_open: exactly one trial call is let through; success closes the
breaker, failure opens it again. Concurrent callers during the trial are
rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """The breaker rejected the call without running it."""


@dataclass
class _Bucket:
    started_at: float
    successes: int = 0
    failures: int = 0


StateListener = Callable[[BreakerState, BreakerState], None]


class CircuitBreaker:
    def __init__(
        self,
        name: str = "ai-backend",
        failure_threshold: float = 0.5,
        min_calls: int = 3,
        window_seconds: float = 10.0,
        buckets: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0 < failure_threshold <= 1:
            raise ValueError("failure_threshold must be in (0, 1]")
        self.name = name
        self._threshold = failure_threshold
        self._min_calls = min_calls
        self._window = window_seconds
        self._bucket_span = window_seconds / buckets
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._buckets: deque[_Bucket] = deque()
        self._state = BreakerState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> BreakerState:
        if self._state is BreakerState.OPEN and self._cooldown_elapsed():
            self._transition(BreakerState.HALF_OPEN)
        return self._state

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def stats(self) -> tuple[int, int]:
        """Return (successes, failures) inside the rolling window."""
        self._expire_buckets()
        return (
            sum(b.successes for b in self._buckets),
            sum(b.failures for b in self._buckets),
        )

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        self._before_call()
        try:
            result = await func()
        except asyncio.CancelledError:
            self._trial_in_flight = False
            raise
        except Exception as exc:
            self._on_failure(exc)
            raise
        self._on_success()
        return result

    def force_open(self) -> None:
        self._transition(BreakerState.OPEN)

    def force_close(self) -> None:
        self._transition(BreakerState.CLOSED)

    # --- internals ---

    def _before_call(self) -> None:
        state = self.state
        if state is BreakerState.OPEN:
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        if state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(f"Circuit '{self.name}' is half-open, trial in flight")
            self._trial_in_flight = True

    def _on_success(self) -> None:
        if self._state is BreakerState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(BreakerState.CLOSED)
            return
        self._current_bucket().successes += 1

    def _on_failure(self, exc: Exception) -> None:
        if self._state is BreakerState.HALF_OPEN:
            self._trial_in_flight = False
            logger.warning("Circuit '%s' trial call failed: %s", self.name, exc)
            self._transition(BreakerState.OPEN)
            return
        if self._state is not BreakerState.CLOSED:
            return
        self._current_bucket().failures += 1
        successes, failures = self.stats()
        total = successes + failures
        if total >= self._min_calls and failures / total >= self._threshold:
            logger.warning(
                "Circuit '%s' failure rate %.0f%% over %d calls",
                self.name,
                100 * failures / total,
                total,
            )
            self._transition(BreakerState.OPEN)

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self._opened_at >= self._reset_timeout

    def _current_bucket(self) -> _Bucket:
        now = self._clock()
        self._expire_buckets()
        if not self._buckets or now - self._buckets[-1].started_at >= self._bucket_span:
            self._buckets.append(_Bucket(started_at=now))
        return self._buckets[-1]

    def _expire_buckets(self) -> None:
        cutoff = self._clock() - self._window
        while self._buckets and self._buckets[0].started_at <= cutoff:
            self._buckets.popleft()

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state is BreakerState.OPEN:
            self._opened_at = self._clock()
        if new_state is BreakerState.CLOSED:
            self._buckets.clear()
        self._trial_in_flight = False
        if old_state is new_state:
            return
        logger.warning("Circuit '%s' %s -> %s", self.name, old_state, new_state)
        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("Circuit listener failed")
