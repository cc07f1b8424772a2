from collections import deque
from typing import Protocol

import structlog

from swipefeed.schemas.matching import MatchEvent, MatchStats

logger = structlog.get_logger()


class NotificationSink(Protocol):
    def deliver(self, event: MatchEvent) -> None: ...


class MatchNotifier:
    """
    In-memory notification sink.
    Keeps delivered matches newest first, plus the total/new match counters.
    """

    def __init__(self, max_items: int = 100):
        self.recent: deque[MatchEvent] = deque(maxlen=max_items)
        self.stats = MatchStats()

    def deliver(self, event: MatchEvent) -> None:
        self.recent.appendleft(event)
        self.stats.total_matches += 1
        self.stats.new_matches += 1
        logger.info(
            "match_notification_created",
            candidate_id=event.matched_user.id,
            name=event.matched_user.name,
            score=event.score,
        )

    def mark_seen(self) -> None:
        self.stats.new_matches = 0

    def items(self) -> list[MatchEvent]:
        return list(self.recent)
