import random

import pytest
import pytest_asyncio

from factories import FakeFetcher, FakeImageLoader, VirtualClock

from swipefeed.core.config import Settings
from swipefeed.core.timers import TimerRegistry
from swipefeed.services.analytics import AnalyticsTracker
from swipefeed.services.candidate_pool import CandidatePool
from swipefeed.services.feed import FeedEngine
from swipefeed.services.network import NetworkMonitor
from swipefeed.services.retry import RetryScheduler
from swipefeed.services.swipe_service import InMemoryPushChannel


@pytest.fixture()
def clock():
    return VirtualClock()


@pytest.fixture()
def network():
    return NetworkMonitor()


@pytest.fixture()
def timers(clock):
    return TimerRegistry(clock.sleep)


@pytest.fixture()
def fetcher():
    return FakeFetcher()


@pytest.fixture()
def retry(timers, network):
    return RetryScheduler(timers, network, rng=random.Random(7))


@pytest.fixture()
def pool_factory(fetcher, network, retry, timers):
    def _make(**kwargs):
        return CandidatePool(fetcher, network, retry, timers, **kwargs)

    return _make


@pytest.fixture()
def feed_settings():
    return Settings(
        SWIPE_TIMEOUT_SECONDS=0.05,
        ANALYTICS_ENABLED=False,
        IMAGE_IDLE_DELAY_MS=0,
    )


@pytest.fixture()
def channel():
    async def no_match(payload):
        return {"success": True, "isMatch": False}

    return InMemoryPushChannel(responder=no_match)


@pytest_asyncio.fixture()
async def engine(fetcher, channel, clock, feed_settings):
    feed = FeedEngine(
        fetcher,
        channel,
        analytics=AnalyticsTracker(enabled=False),
        image_loader=FakeImageLoader(),
        settings=feed_settings,
        sleep=clock.sleep,
        rng=random.Random(7),
    )
    yield feed
    await feed.close()
