import asyncio

import pytest

from swipefeed.services.pull_to_refresh import PullToRefreshGesture


class Refresher:
    def __init__(self):
        self.calls = 0
        self.busy = False
        self.gate: asyncio.Event | None = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()


@pytest.fixture()
def refresher():
    return Refresher()


@pytest.fixture()
def gesture(refresher):
    return PullToRefreshGesture(refresher, lambda: refresher.busy, threshold=100)


def test_resistance_and_cap(gesture):
    gesture.start(0)

    assert gesture.move(100) == 50
    assert gesture.move(250) == 125
    assert gesture.move(1000) == 150
    assert gesture.move(-40) == 0


def test_pull_ignored_unless_at_top(gesture):
    assert gesture.start(0, scroll_top=12) is False
    assert gesture.move(400) == 0
    assert not gesture.active


@pytest.mark.asyncio
async def test_release_past_threshold_refreshes(gesture, refresher):
    gesture.start(0)
    gesture.move(240)

    assert await gesture.end() is True
    assert refresher.calls == 1
    assert gesture.distance == 0
    assert not gesture.refreshing


@pytest.mark.asyncio
async def test_release_at_threshold_does_not_refresh(gesture, refresher):
    gesture.start(0)
    gesture.move(200)

    assert gesture.distance == 100
    assert await gesture.end() is False
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_scrolling_away_cancels_pull(gesture, refresher):
    gesture.start(0)
    gesture.move(300)
    gesture.move(320, scroll_top=5)

    assert await gesture.end() is False
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_busy_feed_ignores_refresh(gesture, refresher):
    refresher.busy = True
    gesture.start(0)
    gesture.move(300)

    assert await gesture.end() is False
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_second_pull_during_refresh_ignored(gesture, refresher):
    refresher.gate = asyncio.Event()
    gesture.start(0)
    gesture.move(300)
    first = asyncio.create_task(gesture.end())
    await asyncio.sleep(0)
    assert gesture.refreshing

    gesture.start(0)
    gesture.move(300)
    assert await gesture.end() is False

    refresher.gate.set()
    assert await first is True
    assert refresher.calls == 1
