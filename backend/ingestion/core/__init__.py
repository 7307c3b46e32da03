"""Ingestion core: fetch, decode, validate, accumulate, checkpoint.

The controller lives in `ingestion.core.ingestion_controller`; it is not
re-exported here because it pulls in the adapters.
"""

from ingestion.core.game_filter import GameValidationFilters, GameValidator, ValidationStats
from ingestion.core.network_client import BackoffFetcher
from ingestion.core.opening_stats import accumulate_opening_stats, create_empty_player_data
from ingestion.core.outcome import FailureReason, PipelineFailure, PipelineResult, PipelineSuccess
from ingestion.core.stream_decoder import NdjsonDecoder, iter_ndjson

__all__ = [
    "BackoffFetcher",
    "FailureReason",
    "GameValidationFilters",
    "GameValidator",
    "NdjsonDecoder",
    "PipelineFailure",
    "PipelineResult",
    "PipelineSuccess",
    "ValidationStats",
    "accumulate_opening_stats",
    "create_empty_player_data",
    "iter_ndjson",
]
