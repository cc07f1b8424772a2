"""Analytics tracking for swipe actions, matches and undo. Never blocks the feed."""

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

import httpx
import structlog

from swipefeed.core.config import get_settings
from swipefeed.core.timers import TimerRegistry

logger = structlog.get_logger()

SWIPE_ACTION = "Swipe Action"
SWIPE_UNDONE = "Swipe Undone"
SWIPE_FAILED = "Swipe Failed"
MATCH_CREATED = "Match Created"


class AnalyticsSink(Protocol):
    def track(self, name: str, properties: dict | None = None) -> None: ...


class AnalyticsTracker:
    """Keeps a bounded local buffer and forwards events to the analytics API when enabled."""

    def __init__(
        self,
        timers: TimerRegistry | None = None,
        client: httpx.AsyncClient | None = None,
        *,
        enabled: bool | None = None,
        url: str | None = None,
        buffer_size: int | None = None,
    ):
        settings = get_settings()
        self.enabled = settings.ANALYTICS_ENABLED if enabled is None else enabled
        self.url = url or settings.ANALYTICS_URL
        self.events: deque[dict] = deque(maxlen=buffer_size or settings.ANALYTICS_BUFFER_SIZE)
        self.session_id = f"session_{uuid.uuid4().hex[:12]}"
        self._timers = timers
        self._client = client
        self._owns_client = False

    def track(self, name: str, properties: dict | None = None) -> None:
        event = {
            "eventName": name,
            "data": properties or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessionId": self.session_id,
        }
        self.events.append(event)
        logger.debug("analytics_event", name=name)

        if not self.enabled or self._timers is None:
            return
        try:
            self._timers.spawn(self._send(event), name="analytics-send")
        except RuntimeError:
            logger.debug("analytics_send_skipped", name=name)

    async def _send(self, event: dict) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=5)
            self._owns_client = True
        try:
            resp = await self._client.post(self.url, json=event)
            if resp.status_code >= 300:
                logger.warning("analytics_delivery_failed", status=resp.status_code, name=event["eventName"])
        except httpx.HTTPError as e:
            logger.warning("analytics_delivery_error", name=event["eventName"], error=str(e))

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
