"""Feed engine: owns the pool, swipes, match delivery and every timer behind them."""

import random

import structlog

from swipefeed.core.config import Settings, get_settings
from swipefeed.core.timers import Sleep, TimerRegistry
from swipefeed.schemas.candidate import Filters
from swipefeed.schemas.feed import ErrorInfo, FeedSnapshot
from swipefeed.schemas.swipe import SwipeDirection, SwipeRecord
from swipefeed.services.analytics import AnalyticsSink, AnalyticsTracker
from swipefeed.services.candidate_client import CandidateFetcher
from swipefeed.services.candidate_pool import CandidatePool
from swipefeed.services.image_preloader import HttpImageLoader, ImageLoader, ImagePreloader
from swipefeed.services.match_queue import MatchQueue
from swipefeed.services.network import NetworkMonitor
from swipefeed.services.notification_service import MatchNotifier, NotificationSink
from swipefeed.services.pull_to_refresh import PullToRefreshGesture
from swipefeed.services.retry import RetryScheduler
from swipefeed.services.swipe_controller import SwipeController
from swipefeed.services.swipe_service import PushChannel, SwipeService

logger = structlog.get_logger()

VISIBLE_WINDOW = 3


class FeedEngine:
    def __init__(
        self,
        fetcher: CandidateFetcher,
        channel: PushChannel,
        *,
        notifier: NotificationSink | None = None,
        analytics: AnalyticsSink | None = None,
        image_loader: ImageLoader | None = None,
        network: NetworkMonitor | None = None,
        settings: Settings | None = None,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ):
        settings = settings or get_settings()
        self.timers = TimerRegistry(sleep)
        self.network = network or NetworkMonitor()
        self.notifier = notifier or MatchNotifier()
        self.analytics = analytics or AnalyticsTracker(self.timers)
        self.channel = channel
        self._fetcher = fetcher

        self.retry = RetryScheduler(
            self.timers,
            self.network,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            jitter_ms=settings.RETRY_JITTER_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            rng=rng,
        )
        self._image_loader = image_loader or HttpImageLoader()
        self.preloader = ImagePreloader(
            self._image_loader,
            self.timers,
            priority_count=settings.IMAGE_PRIORITY_COUNT,
            idle_delay_ms=settings.IMAGE_IDLE_DELAY_MS,
        )
        self.pool = CandidatePool(
            fetcher,
            self.network,
            self.retry,
            self.timers,
            page_size=settings.PAGE_SIZE,
            preload_threshold=settings.PRELOAD_THRESHOLD,
            on_loaded=self.preloader.preload,
            extra_provider=self._extra,
        )
        self.matches = MatchQueue(
            self.notifier,
            self.timers,
            batch_size=settings.MATCH_BATCH_SIZE,
            stagger_ms=settings.MATCH_STAGGER_MS,
            reschedule_ms=settings.MATCH_RESCHEDULE_MS,
            analytics=self.analytics,
        )
        self.swipes = SwipeController(
            self.pool,
            SwipeService(channel),
            self.matches,
            self.timers,
            timeout_seconds=settings.SWIPE_TIMEOUT_SECONDS,
            analytics=self.analytics,
        )
        self.gesture = PullToRefreshGesture(
            self.refresh,
            lambda: self.pool.loading,
            threshold=settings.PULL_THRESHOLD_PX,
            resistance=settings.PULL_RESISTANCE,
            max_factor=settings.PULL_MAX_FACTOR,
        )
        self._closed = False

    def _extra(self) -> dict:
        extra = {"includeDetails": True}
        last = self.swipes.last_direction
        if last is not None:
            extra["lastSwipeDirection"] = last.wire
        return extra

    async def start(self) -> FeedSnapshot:
        if not self.channel.connected:
            self.channel.connect()
        result = await self.pool.load()
        if result is not None and not self.pool.candidates:
            logger.info("feed_empty")
        return self.snapshot()

    async def load_more(self) -> FeedSnapshot:
        await self.pool.load()
        return self.snapshot()

    async def retry_now(self) -> FeedSnapshot:
        await self.pool.retry()
        return self.snapshot()

    async def swipe(self, direction: SwipeDirection) -> SwipeRecord | None:
        started = self.swipes.begin(direction)
        if started is None:
            return None
        self.preloader.preload(self.pool.window(VISIBLE_WINDOW * 2))
        record, index_before, task = started
        if task is not None:
            await self.swipes.settle(record, index_before, task)
        return record

    def swipe_nowait(self, direction: SwipeDirection) -> SwipeRecord | None:
        record = self.swipes.swipe_nowait(direction)
        if record is not None:
            self.preloader.preload(self.pool.window(VISIBLE_WINDOW * 2))
        return record

    def undo(self, token: str | None = None) -> bool:
        return self.swipes.undo(token)

    async def refresh(self) -> bool:
        """Forced reset to page 1. Returns False when a load or refresh is already running."""
        if self.pool.loading:
            logger.info("feed_refresh_ignored", status=self.pool.state.status.value)
            return False
        self.swipes.clear()
        await self.pool.refresh()
        return True

    async def set_filters(self, filters: Filters) -> FeedSnapshot:
        if filters != self.pool.state.filters:
            self.swipes.clear()
            await self.pool.load(reset=True, filters=filters)
        return self.snapshot()

    def set_online(self, online: bool) -> bool:
        return self.network.set_online(online)

    def snapshot(self) -> FeedSnapshot:
        pool = self.pool
        error = None
        if pool.last_error is not None:
            error = ErrorInfo(
                kind=pool.last_error.kind.value,
                message=pool.last_error.message,
                terminal=pool.error_terminal,
            )
        return FeedSnapshot(
            candidates=[c.model_copy() for c in pool.window(VISIBLE_WINDOW)],
            current_index=pool.current_index,
            total=len(pool.candidates),
            page=pool.state.page,
            status=pool.state.status,
            has_more=pool.state.has_more,
            retry_count=pool.state.retry_count,
            online=self.network.online,
            exhausted=not pool.state.has_more and pool.remaining == 0,
            error=error,
            swipe_failure=self.swipes.failure.model_copy() if self.swipes.failure else None,
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.pool.close()
        self.matches.cancel()
        self.swipes.cancel_animations()
        await self.timers.close()
        self.channel.disconnect()
        for resource in (self._fetcher, self._image_loader, self.analytics):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("feed_closed")
