from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class Candidate(BaseModel):
    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "_id"))
    name: str = Field(min_length=1)
    match_criteria: dict = Field(validation_alias=AliasChoices("matchCriteria", "match_criteria"))
    score: float = Field(0.0, validation_alias=AliasChoices("score", "matchScore"))
    image_url: str | None = Field(
        None, validation_alias=AliasChoices("imageUrl", "image_url", "profilePicture")
    )
    profile_snapshot: dict = {}
    preloaded: bool = False

    @classmethod
    def from_item(cls, item: Any) -> "Candidate":
        """Build a candidate from a raw fetch item.

        Raises pydantic.ValidationError when the item lacks id, name or matchCriteria.
        """
        if not isinstance(item, dict):
            return cls.model_validate(item)
        return cls.model_validate({**item, "profile_snapshot": dict(item)})


class Filters(BaseModel):
    personality_type: str | None = None
    budget: str | None = None
    interests: set[str] = set()

    def to_params(self) -> dict:
        params = {}
        if self.personality_type:
            params["personalityType"] = self.personality_type
        if self.budget:
            params["budget"] = self.budget
        if self.interests:
            params["interests"] = ",".join(sorted(self.interests))
        return params
