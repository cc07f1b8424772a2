"""Swipe decisions with optimistic cursor updates and undo.

The cursor advances and the swipe is recorded before any network result is
awaited. A Like is submitted to the swipe service raced against a timeout;
when the submission fails the swipe is rolled back and the failure is kept
with a token so the rollback itself can be undone.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Protocol

import structlog

from swipefeed.core.errors import SwipeErrorKind, SwipeSubmissionError
from swipefeed.core.timers import TimerRegistry
from swipefeed.schemas.candidate import Candidate
from swipefeed.schemas.matching import MatchOutcome
from swipefeed.schemas.swipe import SwipeDirection, SwipeFailure, SwipeRecord
from swipefeed.services.analytics import SWIPE_ACTION, SWIPE_FAILED, SWIPE_UNDONE, AnalyticsSink
from swipefeed.services.candidate_pool import CandidatePool
from swipefeed.services.match_queue import MatchQueue, MatchTask
from swipefeed.services.swipe_service import SwipeService

logger = structlog.get_logger()


class AnimationHandle(Protocol):
    def cancel(self) -> None: ...


class SwipeController:
    def __init__(
        self,
        pool: CandidatePool,
        swipe_service: SwipeService,
        match_queue: MatchQueue,
        timers: TimerRegistry,
        *,
        timeout_seconds: float = 10.0,
        analytics: AnalyticsSink | None = None,
    ):
        self._pool = pool
        self._service = swipe_service
        self._queue = match_queue
        self._timers = timers
        self._analytics = analytics
        self.timeout = timeout_seconds

        self.history: list[SwipeRecord] = []
        self.failure: SwipeFailure | None = None
        self._failed_record: SwipeRecord | None = None
        self._failed_index = 0
        self._inflight: dict[str, MatchTask] = {}
        self._animations: dict[str, AnimationHandle] = {}
        self._last_swipe_at: datetime | None = None

    @property
    def current_index(self) -> int:
        return self._pool.current_index

    @property
    def last_direction(self) -> SwipeDirection | None:
        return self.history[-1].direction if self.history else None

    # --- animation registry ---

    def register_animation(self, candidate_id: str, handle: AnimationHandle) -> None:
        previous = self._animations.pop(candidate_id, None)
        if previous is not None:
            previous.cancel()
        self._animations[candidate_id] = handle

    def release_animation(self, candidate_id: str) -> None:
        handle = self._animations.pop(candidate_id, None)
        if handle is not None:
            handle.cancel()

    @property
    def active_animations(self) -> int:
        return len(self._animations)

    # --- swiping ---

    async def swipe(self, direction: SwipeDirection) -> SwipeRecord | None:
        """Swipe on the current candidate and wait for a Like to settle."""
        started = self.begin(direction)
        if started is None:
            return None
        record, index_before, task = started
        if task is not None:
            await self.settle(record, index_before, task)
        return record

    def swipe_nowait(self, direction: SwipeDirection) -> SwipeRecord | None:
        """Apply the swipe immediately and let a Like settle in the background."""
        started = self.begin(direction)
        if started is None:
            return None
        record, index_before, task = started
        if task is not None:
            self._timers.spawn(self.settle(record, index_before, task), name=f"settle-{record.candidate.id}")
        return record

    def begin(self, direction: SwipeDirection) -> tuple[SwipeRecord, int, MatchTask | None] | None:
        candidate = self._pool.current()
        if candidate is None:
            return None

        index_before = self._pool.current_index
        record = self._record(candidate, direction)

        if direction is SwipeDirection.PASS:
            self.release_animation(candidate.id)
            return record, index_before, None

        submission = self._timers.spawn(
            self._submit(candidate, direction), name=f"swipe-{candidate.id}", log_errors=False
        )
        task = MatchTask(candidate=candidate, outcome=submission)
        self._inflight[candidate.id] = task
        self._queue.enqueue(task)
        return record, index_before, task

    async def settle(self, record: SwipeRecord, index_before: int, task: MatchTask) -> None:
        candidate_id = record.candidate.id
        try:
            await task.outcome
        except SwipeSubmissionError as e:
            if not task.revoked:
                self._rollback(record, index_before, e)
        finally:
            # an undone task must not touch a newer swipe on the same candidate
            if self._inflight.get(candidate_id) is task:
                del self._inflight[candidate_id]
                self.release_animation(candidate_id)

    def _record(self, candidate: Candidate, direction: SwipeDirection) -> SwipeRecord:
        now = datetime.now(timezone.utc)
        self._pool.advance()
        record = SwipeRecord(candidate=candidate, direction=direction, at=now)
        self.history.append(record)
        self.failure = None
        self._failed_record = None

        speed_ms = None
        if self._last_swipe_at is not None:
            speed_ms = int((now - self._last_swipe_at).total_seconds() * 1000)
        self._last_swipe_at = now

        logger.info(
            "swipe_recorded",
            candidate_id=candidate.id,
            direction=direction.value,
            cursor=self._pool.current_index,
        )
        self._track(
            SWIPE_ACTION,
            {
                "direction": direction.wire,
                "userId": candidate.id,
                "matchScore": candidate.score,
                "swipeSpeed": speed_ms,
            },
        )

        # Near the end of the loaded window: ask the pool for the next page
        if self._pool.remaining <= self._pool.preload_threshold:
            self._pool.maybe_top_up()
        return record

    async def _submit(self, candidate: Candidate, direction: SwipeDirection) -> MatchOutcome:
        try:
            return await asyncio.wait_for(self._service.submit(candidate.id, direction), self.timeout)
        except asyncio.TimeoutError as e:
            raise SwipeSubmissionError(SwipeErrorKind.TIMEOUT, "Swipe request timed out") from e
        except (ConnectionError, OSError) as e:
            raise SwipeSubmissionError(SwipeErrorKind.DISCONNECTED, str(e)) from e

    def _rollback(self, record: SwipeRecord, index_before: int, error: SwipeSubmissionError) -> None:
        rolled_back = bool(self.history) and self.history[-1] is record
        if rolled_back:
            self.history.pop()
            self._pool.restore_cursor(index_before)

        token = uuid.uuid4().hex
        self.failure = SwipeFailure(
            token=token,
            candidate_id=record.candidate.id,
            direction=record.direction,
            kind=error.kind.value,
            message=error.message,
        )
        self._failed_record = record if rolled_back else None
        self._failed_index = index_before

        logger.warning(
            "swipe_rolled_back" if rolled_back else "swipe_failed",
            candidate_id=record.candidate.id,
            error_kind=error.kind.value,
            error=error.message,
            cursor=self._pool.current_index,
        )
        self._track(SWIPE_FAILED, {"userId": record.candidate.id, "reason": error.kind.value})

    # --- undo ---

    def undo(self, token: str | None = None) -> bool:
        """Undo the most recent swipe, or with a token, undo that swipe's rollback."""
        if token is not None:
            return self._undo_rollback(token)
        if not self.history:
            return False

        record = self.history.pop()
        self._pool.rewind()
        task = self._inflight.get(record.candidate.id)
        if task is not None:
            task.revoked = True
        self.failure = None
        self._failed_record = None

        logger.info("swipe_undone", candidate_id=record.candidate.id, cursor=self._pool.current_index)
        self._track(SWIPE_UNDONE, {"userId": record.candidate.id, "direction": record.direction.wire})
        return True

    def _undo_rollback(self, token: str) -> bool:
        record = self._failed_record
        if self.failure is None or self.failure.token != token or record is None:
            return False
        current = self._pool.current()
        if self._pool.current_index != self._failed_index or current is None or current.id != record.candidate.id:
            return False

        self._pool.advance()
        self.history.append(record)
        self.failure = None
        self._failed_record = None
        logger.info("swipe_rollback_undone", candidate_id=record.candidate.id, cursor=self._pool.current_index)
        return True

    def clear(self) -> None:
        """Forget history after the pool was reset. In-flight likes still reach the match queue."""
        self.history.clear()
        self.failure = None
        self._failed_record = None

    def cancel_animations(self) -> None:
        for candidate_id in list(self._animations):
            self.release_animation(candidate_id)

    def _track(self, name: str, properties: dict) -> None:
        if self._analytics is not None:
            self._analytics.track(name, properties)
