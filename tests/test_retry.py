import random

import pytest

from swipefeed.core.errors import FetchError, FetchErrorKind
from swipefeed.services.retry import RetryScheduler


def server_error():
    return FetchError(FetchErrorKind.SERVER_ERROR, "Server responded with status 500", status_code=500)


@pytest.mark.parametrize("retry_count", [0, 1, 2])
def test_delay_bounds(timers, network, retry_count):
    retry = RetryScheduler(timers, network, base_delay_ms=1000, rng=random.Random(retry_count))
    low = 1000 * 2**retry_count / 1000
    for _ in range(50):
        delay = retry.compute_delay(retry_count)
        assert low <= delay <= low + 1.0
        assert delay <= 10.0


def test_delay_is_capped(timers, network):
    retry = RetryScheduler(timers, network, base_delay_ms=1000, max_delay_ms=10000)
    assert retry.compute_delay(4) == 10.0
    assert retry.compute_delay(10) == 10.0


@pytest.mark.asyncio
async def test_schedule_runs_operation_after_delay(timers, clock, retry):
    calls = []

    async def operation():
        calls.append(clock.now)

    assert retry.schedule(operation, server_error()) is True
    assert retry.retry_count == 1
    assert retry.pending

    await timers.join()

    assert len(calls) == 1
    assert 1.0 <= clock.sleeps[0] <= 2.0
    assert not retry.pending


@pytest.mark.asyncio
async def test_stops_after_max_attempts(retry, timers):
    async def operation():
        pass

    for _ in range(2):
        assert retry.schedule(operation, server_error()) is True
        await timers.join()

    # third consecutive failure is terminal
    assert retry.schedule(operation, server_error()) is False
    assert retry.retry_count == 3
    assert retry.exhausted
    assert not retry.pending
    assert retry.schedule(operation, server_error()) is False
    assert retry.retry_count == 3


def test_offline_error_is_not_retried(retry):
    async def operation():
        pass

    assert retry.schedule(operation, FetchError(FetchErrorKind.OFFLINE)) is False
    assert retry.retry_count == 0


@pytest.mark.asyncio
async def test_cancelled_retry_never_runs(retry, timers):
    calls = []

    async def operation():
        calls.append(1)

    retry.schedule(operation, server_error())
    retry.cancel()
    await timers.join()

    assert calls == []
    assert retry.retry_count == 1


@pytest.mark.asyncio
async def test_retry_abandoned_when_offline(retry, timers, network):
    calls = []

    async def operation():
        calls.append(1)

    retry.schedule(operation, server_error())
    network.set_online(False)
    await timers.join()

    assert calls == []


@pytest.mark.asyncio
async def test_offline_at_fire_time_reports_abandoned(timers, network):
    abandoned = []
    retry = RetryScheduler(timers, network, rng=random.Random(3), on_abandoned=lambda: abandoned.append(1))
    calls = []

    async def operation():
        calls.append(1)

    retry.schedule(operation, server_error())
    network.set_online(False)
    await timers.join()

    assert calls == []
    assert abandoned == [1]
    assert not retry.pending


@pytest.mark.asyncio
async def test_reset_clears_count(retry, timers):
    async def operation():
        pass

    retry.schedule(operation, server_error())
    retry.reset()
    await timers.join()
    assert retry.retry_count == 0
    assert not retry.pending
