"""Structured results returned by the pipeline controller.

Every run ends in exactly one of these; callers branch on `success` and show
`message` without needing to know internal exception types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ingestion.core.game_filter import ValidationStats
from recommender.schemas.stats import InferencePredictResponse, PlayerData


class FailureReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    CONFIGURATION = "configuration"
    REFERENCE_DATA_UNAVAILABLE = "reference_data_unavailable"
    USER_NOT_FOUND = "user_not_found"
    NO_RATING = "no_rating"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    NO_DATA = "no_data"
    INFERENCE_FAILED = "inference_failed"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True, slots=True)
class PipelineSuccess:
    player_data: PlayerData
    message: str
    recommendations: Optional[InferencePredictResponse] = None
    validation_stats: Optional[ValidationStats] = None
    success: bool = True


@dataclass(frozen=True, slots=True)
class PipelineFailure:
    reason: FailureReason
    message: str
    validation_stats: Optional[ValidationStats] = None
    success: bool = False


PipelineResult = Union[PipelineSuccess, PipelineFailure]
