"""Batched, staggered delivery of confirmed matches.

Tasks are drained oldest first in fixed-size batches. Within a batch each
outcome is awaited independently; confirmed matches are delivered in
descending score order with a fixed stagger between deliveries. Batches are
delivered FIFO, and the next batch is scheduled after a short delay rather
than drained recursively.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable
from dataclasses import dataclass

import structlog

from swipefeed.core.timers import TimerHandle, TimerRegistry
from swipefeed.schemas.candidate import Candidate
from swipefeed.schemas.matching import MatchEvent, MatchOutcome
from swipefeed.services.analytics import MATCH_CREATED, AnalyticsSink
from swipefeed.services.notification_service import NotificationSink

logger = structlog.get_logger()


@dataclass
class MatchTask:
    candidate: Candidate
    outcome: Awaitable[MatchOutcome]
    revoked: bool = False


class MatchQueue:
    def __init__(
        self,
        sink: NotificationSink,
        timers: TimerRegistry,
        *,
        batch_size: int = 3,
        stagger_ms: int = 800,
        reschedule_ms: int = 1000,
        analytics: AnalyticsSink | None = None,
    ):
        self._sink = sink
        self._timers = timers
        self._analytics = analytics
        self.batch_size = batch_size
        self.stagger = stagger_ms / 1000
        self.reschedule_delay = reschedule_ms / 1000
        self._queue: deque[MatchTask] = deque()
        self._drain_handle: TimerHandle | None = None
        self.delivered = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._drain_handle is not None

    def enqueue(self, task: MatchTask) -> None:
        self._queue.append(task)
        logger.debug("match_task_enqueued", candidate_id=task.candidate.id, pending=len(self._queue))
        if self._drain_handle is None:
            self._drain_handle = self._timers.spawn(self._drain(), name="match-drain")

    async def _drain(self) -> None:
        batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
        results = await asyncio.gather(*(self._resolve(task) for task in batch))

        # sort is stable: equal scores keep arrival order
        events = sorted((e for e in results if e is not None), key=lambda e: e.score, reverse=True)
        for i, event in enumerate(events):
            if i:
                await self._timers.sleep(self.stagger)
            self._deliver(event)

        logger.info(
            "match_batch_drained",
            batch_size=len(batch),
            delivered=len(events),
            remaining=len(self._queue),
        )

        if self._queue:
            self._drain_handle = self._timers.call_later(
                self.reschedule_delay, self._drain, name="match-drain"
            )
        else:
            self._drain_handle = None

    async def _resolve(self, task: MatchTask) -> MatchEvent | None:
        try:
            outcome = await task.outcome
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.warning("match_task_failed", candidate_id=task.candidate.id, error="cancelled")
            return None
        except Exception as e:
            logger.warning("match_task_failed", candidate_id=task.candidate.id, error=str(e))
            return None

        if not outcome.is_match:
            return None
        if task.revoked:
            logger.info("match_dropped_after_undo", candidate_id=task.candidate.id)
            return None

        score = outcome.score if outcome.score is not None else task.candidate.score
        return MatchEvent(
            matched_user=task.candidate,
            score=score,
            conversation=outcome.conversation,
        )

    def _deliver(self, event: MatchEvent) -> None:
        try:
            self._sink.deliver(event)
        except Exception as e:
            logger.error("match_delivery_failed", candidate_id=event.matched_user.id, error=str(e))
            return
        self.delivered += 1
        logger.info("match_delivered", candidate_id=event.matched_user.id, score=event.score)
        if self._analytics is not None:
            self._analytics.track(
                MATCH_CREATED,
                {"userId": event.matched_user.id, "matchScore": event.score},
            )

    def cancel(self) -> None:
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None
        self._queue.clear()
