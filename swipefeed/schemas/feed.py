from enum import Enum

from pydantic import BaseModel

from swipefeed.schemas.candidate import Candidate, Filters
from swipefeed.schemas.swipe import SwipeFailure


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    REFRESHING = "refreshing"
    ERROR = "error"


class FetchState(BaseModel):
    page: int = 1
    filters: Filters = Filters()
    cursor_offset: int = 0
    has_more: bool = True
    retry_count: int = 0
    status: FetchStatus = FetchStatus.IDLE


class FetchResult(BaseModel):
    accepted: list[Candidate]
    has_more: bool


class ErrorInfo(BaseModel):
    kind: str
    message: str
    terminal: bool = False


class FeedSnapshot(BaseModel):
    candidates: list[Candidate]
    current_index: int
    total: int
    page: int
    status: FetchStatus
    has_more: bool
    retry_count: int
    online: bool
    exhausted: bool
    error: ErrorInfo | None = None
    swipe_failure: SwipeFailure | None = None

    model_config = {"frozen": True}


class NetworkUpdate(BaseModel):
    online: bool
