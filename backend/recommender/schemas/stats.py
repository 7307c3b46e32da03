"""Opening statistics accumulated from streamed games.

`PlayerData` is the aggregate built while streaming; it is what gets
checkpointed and, converted to `InferencePayload`, what the inference
service consumes.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, model_validator


# January 1, 2019 00:00:00 UTC in Unix milliseconds. Older games lack the
# clock data used to count plies.
LICHESS_MIN_DATE_UNIX_MS = 1546320593000


class Color(str, Enum):
    WHITE = "white"
    BLACK = "black"


class GameResult(str, Enum):
    """Outcome of a game from the subject's point of view."""
    WIN = "win"
    DRAW = "draw"
    LOSS = "loss"


class TimeControl(str, Enum):
    BLITZ = "blitz"
    RAPID = "rapid"
    CLASSICAL = "classical"


ALL_TIME_CONTROLS: tuple[TimeControl, ...] = (TimeControl.BLITZ, TimeControl.RAPID, TimeControl.CLASSICAL)


class RawOpeningStats(BaseModel):
    """Weighted results for one opening."""
    opening_name: str
    eco: str
    training_id: int
    num_games: int = Field(ge=0)
    num_wins: int = Field(ge=0)
    num_draws: int = Field(ge=0)
    num_losses: int = Field(ge=0)

    @model_validator(mode="after")
    def _counts_add_up(self) -> "RawOpeningStats":
        if self.num_wins + self.num_draws + self.num_losses != self.num_games:
            raise ValueError(
                f"{self.opening_name}: wins+draws+losses "
                f"({self.num_wins}+{self.num_draws}+{self.num_losses}) != games ({self.num_games})"
            )
        return self


class PlayerData(BaseModel):
    """Aggregate for one (username, color, time controls) unit of work.

    `opening_stats` is keyed by opening name. The color and time controls are
    fixed at creation: stats collected under different time controls are never
    merged into the same aggregate.
    """
    lichess_username: str = Field(min_length=1)
    rating: float = Field(ge=0)
    color: Color
    allowed_time_controls: List[TimeControl] = Field(min_length=1)
    opening_stats: Dict[str, RawOpeningStats] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _keys_match_names(self) -> "PlayerData":
        for key, stats in self.opening_stats.items():
            if key != stats.opening_name:
                raise ValueError(f"opening_stats key {key!r} does not match {stats.opening_name!r}")
        return self


# ============================================================================
# Inference service contract
# ============================================================================


class OpeningStatsPayload(BaseModel):
    opening_name: str
    # Sequential id used in training
    opening_id: int
    eco: str
    num_games: int = Field(ge=0)
    num_wins: int = Field(ge=0)
    num_draws: int = Field(ge=0)
    num_losses: int = Field(ge=0)


class InferencePayload(BaseModel):
    """Request body sent to the inference service."""
    name: str
    rating: float = Field(ge=0)
    side: Color
    opening_stats: List[OpeningStatsPayload]


class SingleOpeningRecommendation(BaseModel):
    opening_name: str
    eco: str
    predicted_score: float = Field(ge=0, le=1)


class RecommendationStats(BaseModel):
    num_openings_total: int = Field(ge=0)
    num_openings_played: int = Field(ge=0)
    num_openings_unplayed: int = Field(ge=0)
    predicted_min: float
    predicted_max: float
    predicted_mean: float


class InferencePredictResponse(BaseModel):
    """Successful response from the inference service's /predict endpoint."""
    request_id: str
    side: Color
    recommendations: List[SingleOpeningRecommendation]
    stats: RecommendationStats
    model_loaded: bool
    model_version: str

    model_config = ConfigDict(extra="ignore")
