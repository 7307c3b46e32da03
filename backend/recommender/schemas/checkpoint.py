"""Persisted envelopes.

Streaming runs newest -> oldest, so `since_unix_ms` is the timestamp of the
oldest game processed so far; resuming asks for games strictly older than it.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from recommender.schemas.stats import Color, InferencePredictResponse, PlayerData


CHECKPOINT_SCHEMA_VERSION = 1
RECOMMENDATIONS_SCHEMA_VERSION = 1


class StoredPlayerData(BaseModel):
    """One checkpoint for a (username, color) pair."""
    player_data: PlayerData
    last_fetched_unix_ms: int
    # Pagination cursor: oldest game processed so far.
    since_unix_ms: Optional[int] = None
    # Newest game processed; lets the resolver report what the checkpoint covers.
    newest_game_unix_ms: Optional[int] = None
    fetch_progress: int = Field(ge=0)
    is_complete: bool
    schema_version: Literal[1] = CHECKPOINT_SCHEMA_VERSION
    created_at_unix_ms: int


class CheckpointIndexEntry(BaseModel):
    """Index record for one checkpoint; one key per (username, color)."""
    # First save since the checkpoint was (re)started.
    created_at_unix_ms: int
    last_access_unix_ms: int
    # Encoded size of the checkpoint (key + value, UTF-8 bytes).
    entry_bytes: int = Field(ge=0)


class StoredRecommendationData(BaseModel):
    username: str
    color: Color
    recommendations: InferencePredictResponse
    saved_at_unix_ms: int
    schema_version: Literal[1] = RECOMMENDATIONS_SCHEMA_VERSION


class RecommendationIndexEntry(BaseModel):
    """Index record for one stored recommendation set (own key per entry)."""
    saved_at_unix_ms: int
