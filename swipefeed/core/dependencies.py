from fastapi import Depends, HTTPException, Request, status

from swipefeed.services.feed import FeedEngine
from swipefeed.services.notification_service import MatchNotifier


def get_feed(request: Request) -> FeedEngine:
    feed = getattr(request.app.state, "feed", None)
    if feed is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feed is not running",
        )
    return feed


def get_notifier(feed: FeedEngine = Depends(get_feed)) -> MatchNotifier:
    if not isinstance(feed.notifier, MatchNotifier):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Match history is not available for this notification sink",
        )
    return feed.notifier
