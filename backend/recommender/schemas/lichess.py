"""Lichess API wire types.

Only the user profile is parsed into a model. Streamed games stay plain
dicts: they are filtered field by field and must fail closed (rejected, not
raised) when a field is missing or malformed.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LichessRatingInfo(BaseModel):
    """Rating info for a single time control."""
    games: int = Field(ge=0)
    rating: float = Field(ge=0)
    rd: float = Field(ge=0)
    prog: Optional[float] = None
    prov: Optional[bool] = None

    model_config = ConfigDict(extra="ignore")


class LichessPerformance(BaseModel):
    """Performance stats, restricted to the time controls we analyse."""
    blitz: Optional[LichessRatingInfo] = None
    rapid: Optional[LichessRatingInfo] = None
    classical: Optional[LichessRatingInfo] = None

    model_config = ConfigDict(extra="ignore")


class LichessUserProfile(BaseModel):
    id: str
    username: str
    perfs: LichessPerformance = Field(default_factory=LichessPerformance)
    created_at: int = Field(alias="createdAt")  # unix ms

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
