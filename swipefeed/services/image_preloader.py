"""Best-effort prefetch of candidate images.

The first few upcoming candidates are fetched eagerly, the rest once the
feed is idle. Failures are logged and never affect pool or match state.
"""

from collections.abc import Awaitable, Callable

import httpx
import structlog

from swipefeed.core.timers import TimerRegistry
from swipefeed.schemas.candidate import Candidate

logger = structlog.get_logger()

ImageLoader = Callable[[str], Awaitable[None]]


class HttpImageLoader:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=10, follow_redirects=True)
        self._owns_client = client is None

    async def __call__(self, url: str) -> None:
        resp = await self._client.get(url)
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class ImagePreloader:
    def __init__(
        self,
        loader: ImageLoader,
        timers: TimerRegistry,
        *,
        priority_count: int = 3,
        idle_delay_ms: int = 200,
    ):
        self._loader = loader
        self._timers = timers
        self.priority_count = priority_count
        self.idle_delay = idle_delay_ms / 1000
        self.preloaded: set[str] = set()
        self._inflight: set[str] = set()

    def _wanted(self, candidate: Candidate) -> bool:
        return (
            bool(candidate.image_url)
            and candidate.id not in self.preloaded
            and candidate.id not in self._inflight
        )

    def preload(self, candidates: list[Candidate]) -> None:
        pending = [c for c in candidates if self._wanted(c)]
        if not pending:
            return

        priority = pending[: self.priority_count]
        background = pending[self.priority_count :]

        for candidate in priority:
            self._inflight.add(candidate.id)
            self._timers.spawn(self._load(candidate), name=f"image-{candidate.id}")

        if background:
            self._timers.call_later(
                self.idle_delay, self._load_background, background, name="image-background"
            )

    async def _load_background(self, candidates: list[Candidate]) -> None:
        for candidate in candidates:
            if not self._wanted(candidate):
                continue
            self._inflight.add(candidate.id)
            await self._load(candidate)

    async def _load(self, candidate: Candidate) -> None:
        try:
            await self._loader(candidate.image_url)
        except Exception as e:
            logger.warning("image_preload_failed", candidate_id=candidate.id, error=str(e))
            return
        finally:
            self._inflight.discard(candidate.id)
        self.preloaded.add(candidate.id)
        candidate.preloaded = True
