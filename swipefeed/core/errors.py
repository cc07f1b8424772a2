"""Error taxonomy for the feed engine.

Nothing here is fatal: every error leaves the engine in a state from which
another attempt can be made.
"""

from enum import Enum


class FetchErrorKind(str, Enum):
    OFFLINE = "offline"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"


class SwipeErrorKind(str, Enum):
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    DISCONNECTED = "disconnected"


class FeedError(Exception):
    pass


class FetchError(FeedError):
    def __init__(self, kind: FetchErrorKind, message: str = "", status_code: int | None = None):
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        # Offline fetches never consume a retry attempt
        return self.kind is not FetchErrorKind.OFFLINE


class SwipeSubmissionError(FeedError):
    def __init__(self, kind: SwipeErrorKind, message: str = ""):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(self.message)
