from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from swipefeed.schemas.candidate import Candidate


class SwipeDirection(str, Enum):
    LIKE = "like"
    PASS = "pass"

    @property
    def wire(self) -> str:
        return "right" if self is SwipeDirection.LIKE else "left"


class SwipeRecord(BaseModel):
    candidate: Candidate
    direction: SwipeDirection
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class SwipeFailure(BaseModel):
    token: str
    candidate_id: str
    direction: SwipeDirection
    kind: str
    message: str


class SwipeRequest(BaseModel):
    direction: SwipeDirection


class UndoRequest(BaseModel):
    token: str | None = None


class UndoResponse(BaseModel):
    undone: bool
