import asyncio
import random

import pytest

from factories import FakeImageLoader, make_page
from swipefeed.core.errors import FetchError, FetchErrorKind
from swipefeed.schemas.swipe import SwipeDirection
from swipefeed.services.analytics import AnalyticsTracker
from swipefeed.services.feed import FeedEngine


async def never_wake(delay):
    await asyncio.Event().wait()


async def spin_until(predicate, limit=50):
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0)


@pytest.fixture()
def idle_engine(fetcher, channel, feed_settings):
    """Engine whose timers never fire on their own."""
    fetcher.pages[1] = make_page("u", 5)
    return FeedEngine(
        fetcher,
        channel,
        analytics=AnalyticsTracker(enabled=False),
        image_loader=FakeImageLoader(),
        settings=feed_settings,
        sleep=never_wake,
        rng=random.Random(7),
    )


@pytest.mark.asyncio
async def test_close_cancels_stagger_retry_and_preload_timers(idle_engine, fetcher, channel):
    async def matched(payload):
        return {"success": True, "isMatch": True, "score": 90}

    channel.responder = matched
    engine = idle_engine
    await engine.start()

    engine.swipe_nowait(SwipeDirection.LIKE)
    engine.swipe_nowait(SwipeDirection.LIKE)
    await spin_until(lambda: engine.matches.delivered == 1)
    assert engine.matches.delivered == 1

    fetcher.errors = [FetchError(FetchErrorKind.SERVER_ERROR, "boom", status_code=500)]
    await engine.load_more()
    assert engine.retry.pending
    calls = len(fetcher.calls)

    await engine.close()
    for _ in range(5):
        await asyncio.sleep(0)

    assert engine.timers.pending == 0
    assert not engine.retry.pending
    assert not engine.matches.draining
    assert engine.matches.delivered == 1
    assert len(fetcher.calls) == calls
    assert not channel.connected


@pytest.mark.asyncio
async def test_close_discards_in_flight_fetch(idle_engine, fetcher):
    engine = idle_engine
    await engine.start()
    fetcher.pages[2] = make_page("u", 5, start=5)
    fetcher.gates[2] = asyncio.Event()

    pending = asyncio.create_task(engine.load_more())
    await spin_until(lambda: len(fetcher.calls) == 2)

    await engine.close()
    fetcher.gates[2].set()
    snapshot = await pending

    assert snapshot.total == 5
    assert len(engine.pool.candidates) == 5
    assert len(fetcher.calls) == 2
    assert engine.timers.pending == 0


@pytest.mark.asyncio
async def test_close_is_idempotent(idle_engine):
    await idle_engine.start()

    await idle_engine.close()
    await idle_engine.close()

    assert idle_engine.timers.pending == 0
