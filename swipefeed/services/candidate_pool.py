"""Paginated, deduplicated candidate pool.

The pool owns the candidate list, the viewing cursor and the fetch
lifecycle. Only the most recently issued primary fetch is ever applied:
starting a new one cancels the previous one's token, and a superseded
fetch's resolution is discarded.
"""

import asyncio
from collections.abc import Callable

import structlog
from pydantic import ValidationError

from swipefeed.core.errors import FetchError, FetchErrorKind
from swipefeed.core.timers import TimerRegistry
from swipefeed.schemas.candidate import Candidate, Filters
from swipefeed.schemas.feed import FetchResult, FetchState, FetchStatus
from swipefeed.services.candidate_client import CandidateFetcher
from swipefeed.services.network import NetworkMonitor
from swipefeed.services.retry import RetryScheduler

logger = structlog.get_logger()


class CancellationToken:
    def __init__(self, label: str):
        self.label = label
        self.cancelled = False
        self._task: asyncio.Future | None = None

    def attach(self, task: asyncio.Future) -> None:
        self._task = task

    def cancel(self) -> None:
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


def _validate_items(items: list) -> list[Candidate]:
    valid = []
    for item in items:
        try:
            valid.append(Candidate.from_item(item))
        except ValidationError as e:
            logger.debug("candidate_item_dropped", errors=e.error_count())
    return valid


class CandidatePool:
    def __init__(
        self,
        fetcher: CandidateFetcher,
        network: NetworkMonitor,
        retry: RetryScheduler,
        timers: TimerRegistry,
        *,
        page_size: int = 10,
        preload_threshold: int = 3,
        on_loaded: Callable[[list[Candidate]], None] | None = None,
        extra_provider: Callable[[], dict] | None = None,
    ):
        self._fetcher = fetcher
        self._network = network
        self._retry = retry
        self._timers = timers
        self.page_size = page_size
        self.preload_threshold = preload_threshold
        self._on_loaded = on_loaded
        self._extra_provider = extra_provider

        self.state = FetchState(page=0)
        self.candidates: list[Candidate] = []
        self._ids: set[str] = set()
        self.last_error: FetchError | None = None
        self.error_terminal = False

        self._primary_token: CancellationToken | None = None
        self._topup_token: CancellationToken | None = None
        self._last_request: tuple[int, int, bool] | None = None

        network.on("online", self._on_online)
        network.on("offline", self._on_offline)
        retry.on_abandoned = self._on_retry_abandoned

    # --- cursor ---

    @property
    def current_index(self) -> int:
        return self.state.cursor_offset

    @property
    def remaining(self) -> int:
        return len(self.candidates) - self.state.cursor_offset

    @property
    def loading(self) -> bool:
        return self.state.status in (FetchStatus.LOADING, FetchStatus.REFRESHING)

    @property
    def topping_up(self) -> bool:
        return self._topup_token is not None

    def current(self) -> Candidate | None:
        if self.state.cursor_offset < len(self.candidates):
            return self.candidates[self.state.cursor_offset]
        return None

    def window(self, size: int = 3) -> list[Candidate]:
        start = self.state.cursor_offset
        return self.candidates[start:start + size]

    def advance(self) -> int:
        if self.state.cursor_offset < len(self.candidates):
            self.state.cursor_offset += 1
        return self.state.cursor_offset

    def rewind(self) -> int:
        if self.state.cursor_offset > 0:
            self.state.cursor_offset -= 1
        return self.state.cursor_offset

    def restore_cursor(self, index: int) -> None:
        self.state.cursor_offset = max(0, min(index, len(self.candidates)))

    # --- fetching ---

    def _clear(self, filters: Filters | None = None) -> None:
        if self._primary_token is not None:
            self._primary_token.cancel()
        self._cancel_topup()
        self._retry.reset()
        self.candidates = []
        self._ids = set()
        self.state.page = 0
        self.state.cursor_offset = 0
        self.state.has_more = True
        self.state.retry_count = 0
        if filters is not None:
            self.state.filters = filters
        self.last_error = None
        self.error_terminal = False

    async def fetch(
        self,
        page: int,
        filters: Filters | None = None,
        *,
        reset: bool = False,
        limit: int | None = None,
    ) -> FetchResult:
        """Issue one primary fetch attempt. Raises FetchError on failure."""
        if filters is not None and filters != self.state.filters:
            logger.info("candidate_filters_changed")
            reset = True
        if reset:
            self._clear(filters)
            page = 1
        if limit is None:
            limit = self.page_size * 2 if reset else self.page_size
        return await self._attempt(page, limit, replace=reset)

    async def _attempt(self, page: int, limit: int, replace: bool) -> FetchResult:
        self._last_request = (page, limit, replace)
        self._network.ensure_online()

        if self._primary_token is not None:
            self._primary_token.cancel()
        # a running top-up or a scheduled retry would request the same page
        self._cancel_topup()
        self._retry.cancel()
        token = CancellationToken(f"page-{page}")
        self._primary_token = token
        if self.state.status is not FetchStatus.REFRESHING:
            self.state.status = FetchStatus.LOADING

        logger.info("candidate_fetch_started", page=page, limit=limit, replace=replace)
        request = asyncio.ensure_future(
            self._fetcher.fetch_page(page, self.state.filters, limit, self._extra())
        )
        token.attach(request)
        try:
            items = await request
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if token.cancelled and current is not None and not current.cancelling():
                logger.info("candidate_fetch_superseded", page=page)
                return FetchResult(accepted=[], has_more=self.state.has_more)
            raise
        except FetchError:
            if token.cancelled:
                return FetchResult(accepted=[], has_more=self.state.has_more)
            raise

        if token.cancelled:
            logger.info("candidate_fetch_superseded", page=page)
            return FetchResult(accepted=[], has_more=self.state.has_more)

        self._primary_token = None
        accepted = self._apply(items, replace=replace)
        has_more = len(accepted) >= limit
        # A doubled batch covers two regular pages
        self.state.page = page + max(1, limit // self.page_size) - 1
        self.state.has_more = has_more
        self._retry.record_success()
        self.state.retry_count = 0
        self.state.status = FetchStatus.IDLE
        self.last_error = None
        self.error_terminal = False

        logger.info(
            "candidate_fetch_applied",
            page=page,
            received=len(items),
            accepted=len(accepted),
            has_more=has_more,
            pool_size=len(self.candidates),
        )
        if self._on_loaded is not None and accepted:
            self._on_loaded(self.window(self.preload_threshold * 2))
        self.maybe_top_up()
        return FetchResult(accepted=accepted, has_more=has_more)

    def _apply(self, items: list, replace: bool) -> list[Candidate]:
        if replace:
            self.candidates = []
            self._ids = set()
            self.state.cursor_offset = 0

        fresh = []
        seen = set(self._ids)
        for candidate in _validate_items(items):
            if candidate.id in seen:
                continue
            seen.add(candidate.id)
            fresh.append(candidate)

        fresh.sort(key=lambda c: c.score, reverse=True)
        self.candidates.extend(fresh)
        self._ids.update(c.id for c in fresh)
        return fresh

    def _extra(self) -> dict:
        return self._extra_provider() if self._extra_provider is not None else {}

    # --- loading with retry ---

    async def load(self, *, reset: bool = False, filters: Filters | None = None) -> FetchResult | None:
        """User-initiated load. Failures are routed through the retry scheduler."""
        page = 1 if reset else self.state.page + 1
        try:
            return await self.fetch(page, filters, reset=reset)
        except FetchError as e:
            self._on_failure(e)
            return None

    async def refresh(self) -> FetchResult | None:
        """Forced reset to page 1 with a doubled batch. Ignored while busy."""
        if self.loading:
            logger.info("candidate_refresh_ignored", status=self.state.status.value)
            return None
        self.state.status = FetchStatus.REFRESHING
        try:
            return await self.fetch(1, reset=True)
        except FetchError as e:
            self._on_failure(e)
            return None
        finally:
            if self.state.status is FetchStatus.REFRESHING:
                self.state.status = FetchStatus.IDLE

    async def retry(self) -> FetchResult | None:
        """Manual retry after a terminal error; resets the retry count."""
        self._retry.reset()
        self.state.retry_count = 0
        self.error_terminal = False
        if self._last_request is None:
            return await self.load()
        return await self._run_attempt(*self._last_request)

    async def _run_attempt(self, page: int, limit: int, replace: bool) -> FetchResult | None:
        try:
            return await self._attempt(page, limit, replace)
        except FetchError as e:
            self._on_failure(e)
            return None

    def _on_failure(self, error: FetchError) -> None:
        self.last_error = error
        logger.warning(
            "candidate_fetch_failed",
            error_kind=error.kind.value,
            error=error.message,
            retry_count=self._retry.retry_count,
        )
        if not self._network.online:
            # the host dropped while the request was in flight
            self._enter_offline_error()
            return
        if self._last_request is not None:
            scheduled = self._retry.schedule(
                lambda req=self._last_request: self._run_attempt(*req), error
            )
        else:
            scheduled = False
        self.state.retry_count = self._retry.retry_count

        if scheduled:
            self.state.status = FetchStatus.LOADING
            self.error_terminal = False
            return

        self.state.status = FetchStatus.ERROR
        # Offline errors clear on reconnect; everything else waits for a manual retry
        self.error_terminal = error.kind is not FetchErrorKind.OFFLINE

    # --- top-up ---

    def maybe_top_up(self) -> bool:
        """Start a background fetch of the next page when few candidates remain."""
        if (
            self.remaining > self.preload_threshold
            or not self.state.has_more
            or self.loading
            or self.topping_up
            or not self._network.online
            or self.state.page == 0
        ):
            return False
        token = CancellationToken("top-up")
        self._topup_token = token
        self._timers.spawn(self._top_up(token), name="pool-top-up")
        return True

    async def _top_up(self, token: CancellationToken) -> None:
        page = self.state.page + 1
        logger.info("candidate_top_up_started", page=page, remaining=self.remaining)
        request = asyncio.ensure_future(
            self._fetcher.fetch_page(page, self.state.filters, self.page_size, self._extra())
        )
        token.attach(request)
        try:
            items = await request
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return
        except FetchError as e:
            if not token.cancelled:
                self._topup_token = None
                self.state.has_more = False
                logger.warning("candidate_top_up_failed", page=page, error_kind=e.kind.value)
            return

        if token.cancelled:
            return
        self._topup_token = None

        accepted = self._apply(items, replace=False)
        self.state.page = max(self.state.page, page)
        self.state.has_more = len(accepted) >= self.page_size
        if not self.loading:
            self._retry.record_success()
            self.state.retry_count = 0

        logger.info(
            "candidate_top_up_applied",
            page=page,
            accepted=len(accepted),
            has_more=self.state.has_more,
            pool_size=len(self.candidates),
        )
        if self._on_loaded is not None and accepted:
            self._on_loaded(self.window(self.preload_threshold * 2))
        self.maybe_top_up()

    def _cancel_topup(self) -> None:
        if self._topup_token is not None:
            self._topup_token.cancel()
            self._topup_token = None

    # --- network ---

    def _on_online(self) -> None:
        if self.last_error is not None and self.last_error.kind is FetchErrorKind.OFFLINE:
            self.last_error = None

    def _on_offline(self) -> None:
        if self._retry.pending:
            self._retry.cancel()
            self._enter_offline_error()
            logger.info("candidate_retry_abandoned", reason="offline")

    def _on_retry_abandoned(self) -> None:
        if self.state.status is FetchStatus.LOADING:
            self._enter_offline_error()
            logger.info("candidate_retry_abandoned", reason="offline")

    def _enter_offline_error(self) -> None:
        self.last_error = FetchError(FetchErrorKind.OFFLINE, "No network connection")
        self.state.status = FetchStatus.ERROR
        self.error_terminal = False

    def close(self) -> None:
        if self._primary_token is not None:
            self._primary_token.cancel()
            self._primary_token = None
        self._cancel_topup()
        self._retry.cancel()
        self._retry.on_abandoned = None
        self._network.off("online", self._on_online)
        self._network.off("offline", self._on_offline)
