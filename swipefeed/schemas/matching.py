from datetime import datetime, timezone

from pydantic import AliasChoices, BaseModel, Field

from swipefeed.schemas.candidate import Candidate


class MatchOutcome(BaseModel):
    is_match: bool = Field(False, validation_alias=AliasChoices("isMatch", "is_match"))
    score: float | None = Field(None, validation_alias=AliasChoices("score", "matchScore"))
    conversation: dict | None = None


class MatchEvent(BaseModel):
    matched_user: Candidate
    score: float
    conversation: dict | None = None
    delivered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MatchStats(BaseModel):
    total_matches: int = 0
    new_matches: int = 0


class MatchFeedResponse(BaseModel):
    items: list[MatchEvent]
    stats: MatchStats
