"""Retry scheduling with exponential backoff and jitter.

Delays:
    retry 0: base        + jitter
    retry 1: base * 2    + jitter
    retry 2: base * 4    + jitter
    capped at max_delay

The failure that brings the count to ``max_attempts`` is terminal, so an
operation runs at most ``max_attempts`` times in a row. Only ``reset()`` (an
explicit user action) allows further attempts. A retry that comes due while
offline is dropped and reported through ``on_abandoned``.
"""

import random
from collections.abc import Awaitable, Callable

import structlog

from swipefeed.core.errors import FetchError
from swipefeed.core.timers import TimerHandle, TimerRegistry
from swipefeed.services.network import NetworkMonitor

logger = structlog.get_logger()


class RetryScheduler:
    def __init__(
        self,
        timers: TimerRegistry,
        network: NetworkMonitor,
        *,
        base_delay_ms: int = 1000,
        max_attempts: int = 3,
        jitter_ms: int = 1000,
        max_delay_ms: int = 10000,
        rng: random.Random | None = None,
        on_abandoned: Callable[[], None] | None = None,
    ):
        self._timers = timers
        self._network = network
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts
        self.jitter_ms = jitter_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self.on_abandoned = on_abandoned
        self.retry_count = 0
        self._handle: TimerHandle | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None and not self._handle.done

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_attempts

    def compute_delay(self, retry_count: int) -> float:
        """Backoff delay in seconds for the given retry count."""
        delay_ms = self.base_delay_ms * (2**retry_count) + self._rng.uniform(0, self.jitter_ms)
        return min(delay_ms, self.max_delay_ms) / 1000

    def schedule(self, operation: Callable[[], Awaitable], error: FetchError) -> bool:
        """Decide what to do after a failure.

        Returns True when an automatic retry was scheduled, False when the
        failure is terminal (or not retryable at all).
        """
        if not error.retryable:
            return False

        if not self.exhausted:
            self.retry_count += 1
        if self.exhausted:
            logger.error(
                "retry_exhausted",
                retry_count=self.retry_count,
                error_kind=error.kind.value,
                error=error.message,
            )
            return False

        delay = self.compute_delay(self.retry_count - 1)
        self.cancel()
        generation = self._generation

        logger.warning(
            "retry_scheduled",
            attempt=self.retry_count,
            max_attempts=self.max_attempts,
            delay_s=round(delay, 3),
            error_kind=error.kind.value,
        )
        self._handle = self._timers.call_later(
            delay, self._fire, generation, operation, name="fetch-retry"
        )
        return True

    async def _fire(self, generation: int, operation: Callable[[], Awaitable]) -> None:
        if generation != self._generation:
            return
        if not self._network.online:
            self._handle = None
            logger.info("retry_abandoned_offline", attempt=self.retry_count)
            if self.on_abandoned is not None:
                self.on_abandoned()
            return
        self._handle = None
        await operation()

    def cancel(self) -> None:
        """Abandon any scheduled retry without touching the retry count."""
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def record_success(self) -> None:
        self.retry_count = 0

    def reset(self) -> None:
        self.cancel()
        self.retry_count = 0
