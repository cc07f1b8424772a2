import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from swipefeed.core.dependencies import get_feed, get_notifier
from swipefeed.core.rate_limit import limiter
from swipefeed.schemas.candidate import Filters
from swipefeed.schemas.feed import FeedSnapshot, NetworkUpdate
from swipefeed.schemas.matching import MatchFeedResponse, MatchStats
from swipefeed.schemas.swipe import SwipeRequest, UndoRequest, UndoResponse
from swipefeed.services.feed import FeedEngine
from swipefeed.services.notification_service import MatchNotifier

logger = structlog.get_logger()
router = APIRouter(prefix="/feed", tags=["Feed"])


@router.get("", response_model=FeedSnapshot)
async def get_snapshot(feed: FeedEngine = Depends(get_feed)):
    return feed.snapshot()


@router.post("/load", response_model=FeedSnapshot)
async def load_more(feed: FeedEngine = Depends(get_feed)):
    """
    Load the next page of candidates.
    While offline the snapshot carries the offline error and no retry is consumed.
    """
    return await feed.load_more()


@router.post("/retry", response_model=FeedSnapshot)
async def retry(feed: FeedEngine = Depends(get_feed)):
    """Manual retry after automatic retries gave up."""
    return await feed.retry_now()


@router.post("/swipe", response_model=FeedSnapshot)
@limiter.limit("120/minute")
async def swipe(request: Request, data: SwipeRequest, feed: FeedEngine = Depends(get_feed)):
    record = feed.swipe_nowait(data.direction)
    if record is None:
        raise HTTPException(status_code=404, detail="No candidate to swipe")
    return feed.snapshot()


@router.post("/undo", response_model=UndoResponse)
async def undo(data: UndoRequest, feed: FeedEngine = Depends(get_feed)):
    return UndoResponse(undone=feed.undo(data.token))


@router.post("/refresh", response_model=FeedSnapshot)
@limiter.limit("30/minute")
async def refresh(request: Request, feed: FeedEngine = Depends(get_feed)):
    if not await feed.refresh():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A load or refresh is already in progress",
        )
    return feed.snapshot()


@router.put("/filters", response_model=FeedSnapshot)
async def update_filters(data: Filters, feed: FeedEngine = Depends(get_feed)):
    return await feed.set_filters(data)


@router.put("/network", response_model=FeedSnapshot)
async def update_network(data: NetworkUpdate, feed: FeedEngine = Depends(get_feed)):
    feed.set_online(data.online)
    return feed.snapshot()


@router.get("/matches", response_model=MatchFeedResponse)
async def list_matches(notifier: MatchNotifier = Depends(get_notifier)):
    return MatchFeedResponse(items=notifier.items(), stats=notifier.stats)


@router.post("/matches/seen", response_model=MatchStats)
async def mark_matches_seen(notifier: MatchNotifier = Depends(get_notifier)):
    notifier.mark_seen()
    return notifier.stats
