"""Pull-to-refresh: turns a downward drag at the top of the feed into a reset."""

from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class PullToRefreshGesture:
    def __init__(
        self,
        refresh: Callable[[], Awaitable],
        is_busy: Callable[[], bool],
        *,
        threshold: float = 100.0,
        resistance: float = 0.5,
        max_factor: float = 1.5,
    ):
        self._refresh = refresh
        self._is_busy = is_busy
        self.threshold = threshold
        self.resistance = resistance
        self.max_distance = threshold * max_factor
        self.distance = 0.0
        self.refreshing = False
        self._start_y: float | None = None

    @property
    def active(self) -> bool:
        return self._start_y is not None

    @property
    def past_threshold(self) -> bool:
        return self.distance > self.threshold

    def start(self, y: float, scroll_top: float = 0) -> bool:
        """Begin tracking. Drags are only observed when the feed is scrolled to the top."""
        if scroll_top > 0:
            self._start_y = None
            return False
        self._start_y = y
        self.distance = 0.0
        return True

    def move(self, y: float, scroll_top: float = 0) -> float:
        if self._start_y is None:
            return 0.0
        if scroll_top > 0:
            # the feed scrolled away from the top, the pull no longer counts
            self.cancel()
            return 0.0
        raw = y - self._start_y
        self.distance = min(max(raw, 0.0) * self.resistance, self.max_distance)
        return self.distance

    def cancel(self) -> None:
        self._start_y = None
        self.distance = 0.0

    async def end(self) -> bool:
        """Finish the gesture; returns True when a refresh was run."""
        triggered = self.active and self.past_threshold
        self.cancel()
        if not triggered:
            return False

        if self.refreshing or self._is_busy():
            logger.info("pull_to_refresh_ignored", refreshing=self.refreshing)
            return False

        self.refreshing = True
        logger.info("pull_to_refresh_triggered")
        try:
            await self._refresh()
        finally:
            self.refreshing = False
        return True
