import asyncio

import pytest

from factories import make_item
from swipefeed.core.errors import SwipeErrorKind, SwipeSubmissionError
from swipefeed.schemas.candidate import Candidate
from swipefeed.schemas.matching import MatchOutcome
from swipefeed.services.analytics import MATCH_CREATED, AnalyticsTracker
from swipefeed.services.match_queue import MatchQueue, MatchTask
from swipefeed.services.notification_service import MatchNotifier

EPS = 1e-9


class RecordingSink:
    def __init__(self, clock):
        self.clock = clock
        self.delivered = []

    def deliver(self, event):
        self.delivered.append((self.clock.now, event))


def resolved(outcome):
    future = asyncio.get_running_loop().create_future()
    if isinstance(outcome, Exception):
        future.set_exception(outcome)
    else:
        future.set_result(outcome)
    return future


def match_task(user_id, score=None, *, is_match=True, candidate_score=50):
    candidate = Candidate.from_item(make_item(user_id, candidate_score))
    return MatchTask(candidate=candidate, outcome=resolved(MatchOutcome(is_match=is_match, score=score)))


@pytest.fixture()
def sink(clock):
    return RecordingSink(clock)


@pytest.mark.asyncio
async def test_five_matches_delivered_by_score_within_batch(sink, timers):
    queue = MatchQueue(sink, timers)
    for user_id, score in zip("abcde", [60, 70, 80, 90, 95]):
        queue.enqueue(match_task(user_id, score))

    await timers.join()

    scores = [event.score for _, event in sink.delivered]
    # batches never interleave: a,b,c go out before the higher-scored d,e
    assert scores == [80, 70, 60, 95, 90]
    times = [at for at, _ in sink.delivered]
    assert times[1] - times[0] >= 0.8 - EPS
    assert times[2] - times[1] >= 0.8 - EPS
    assert times[3] - times[2] >= 1.0 - EPS
    assert times[4] - times[3] >= 0.8 - EPS
    assert not queue.draining
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_equal_scores_keep_arrival_order(sink, timers):
    queue = MatchQueue(sink, timers)
    for user_id in "xyz":
        queue.enqueue(match_task(user_id, 75))

    await timers.join()

    assert [event.matched_user.id for _, event in sink.delivered] == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_failed_and_unmatched_tasks_do_not_block_batch(sink, timers):
    queue = MatchQueue(sink, timers)
    failing = MatchTask(
        candidate=Candidate.from_item(make_item("f")),
        outcome=resolved(SwipeSubmissionError(SwipeErrorKind.TIMEOUT)),
    )
    queue.enqueue(failing)
    queue.enqueue(match_task("n", 99, is_match=False))
    queue.enqueue(match_task("m", 70))

    await timers.join()

    assert [event.matched_user.id for _, event in sink.delivered] == ["m"]
    assert queue.delivered == 1


@pytest.mark.asyncio
async def test_slow_task_does_not_lose_others(sink, timers):
    queue = MatchQueue(sink, timers)
    slow = asyncio.get_running_loop().create_future()
    queue.enqueue(MatchTask(candidate=Candidate.from_item(make_item("slow")), outcome=slow))
    queue.enqueue(match_task("fast", 60))

    await asyncio.sleep(0)
    slow.set_result(MatchOutcome(is_match=True, score=90))
    await timers.join()

    assert [event.matched_user.id for _, event in sink.delivered] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_revoked_match_is_dropped(sink, timers):
    queue = MatchQueue(sink, timers)
    task = match_task("r", 90)
    task.revoked = True
    queue.enqueue(task)

    await timers.join()

    assert sink.delivered == []


@pytest.mark.asyncio
async def test_missing_outcome_score_falls_back_to_candidate(sink, timers):
    queue = MatchQueue(sink, timers)
    queue.enqueue(match_task("c", None, candidate_score=64))

    await timers.join()

    assert sink.delivered[0][1].score == 64


@pytest.mark.asyncio
async def test_tasks_enqueued_before_drain_starts_share_a_batch(sink, timers):
    queue = MatchQueue(sink, timers, batch_size=3)
    queue.enqueue(match_task("a", 50))
    assert queue.draining
    queue.enqueue(match_task("b", 60))

    await timers.join()

    assert [event.matched_user.id for _, event in sink.delivered] == ["b", "a"]


@pytest.mark.asyncio
async def test_single_leftover_task_is_still_drained(sink, timers):
    queue = MatchQueue(sink, timers, batch_size=3)
    for user_id in "abcd":
        queue.enqueue(match_task(user_id, 50))

    await timers.join()

    assert len(sink.delivered) == 4


@pytest.mark.asyncio
async def test_cancel_discards_queued_tasks(sink, timers):
    queue = MatchQueue(sink, timers)
    for user_id in "abcde":
        queue.enqueue(match_task(user_id, 50))
    queue.cancel()

    await timers.join()

    assert sink.delivered == []
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_delivery_updates_notifier_and_analytics(timers):
    notifier = MatchNotifier()
    analytics = AnalyticsTracker(enabled=False)
    queue = MatchQueue(notifier, timers, analytics=analytics)
    queue.enqueue(match_task("a", 81))
    queue.enqueue(match_task("b", 93))

    await timers.join()

    assert [e.matched_user.id for e in notifier.items()] == ["a", "b"]
    assert notifier.stats.total_matches == 2
    assert notifier.stats.new_matches == 2
    notifier.mark_seen()
    assert notifier.stats.new_matches == 0
    assert notifier.stats.total_matches == 2

    created = [e for e in analytics.events if e["eventName"] == MATCH_CREATED]
    assert [e["data"]["userId"] for e in created] == ["b", "a"]
