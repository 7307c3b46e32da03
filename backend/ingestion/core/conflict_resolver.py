"""Decide how a new request relates to an existing checkpoint.

Pure decision function: it reads the checkpoint lookup it is given and
returns an action plus a reason. Acting on the decision (deleting the
stale checkpoint, loading the resumable one) is the controller's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from recommender.schemas.checkpoint import StoredPlayerData
from recommender.schemas.stats import TimeControl

from ingestion.core.checkpoint_store import ExistingStatsCheck


class ConflictAction(str, Enum):
    FRESH_START = "fresh-start"
    DELETE_AND_RESTART = "delete-and-restart"
    RESUME = "resume"


@dataclass(frozen=True, slots=True)
class ConflictResolution:
    action: ConflictAction
    reason: str
    # The checkpoint to resume from; only set for RESUME.
    existing: Optional[StoredPlayerData] = None


def _as_set(time_controls: Iterable[TimeControl | str]) -> frozenset[TimeControl]:
    return frozenset(TimeControl(tc) for tc in time_controls)


def _fmt(values: frozenset[TimeControl]) -> str:
    return ",".join(sorted(v.value for v in values))


def resolve_storage_conflict(
    existing: ExistingStatsCheck,
    *,
    requested_time_controls: Iterable[TimeControl | str],
    requested_since_unix_ms: Optional[int] = None,
) -> ConflictResolution:
    """
    Map (checkpoint state, request) to fresh-start / delete-and-restart / resume.

    - No checkpoint: fresh-start.
    - Different time-control set (order ignored): delete-and-restart. Stats
      collected under other filters can't be merged.
    - Checkpoint without a cursor: delete-and-restart, there is nothing to
      page on from.
    - Otherwise resume, whatever the requested since boundary. Streaming runs
      newest -> oldest from "now", so a checkpoint already covers any newer
      boundary, and an older (or equal) boundary just means paging further back.
    """
    if not existing.exists or existing.data is None:
        return ConflictResolution(ConflictAction.FRESH_START, "No existing checkpoint")

    stored = existing.data
    requested = _as_set(requested_time_controls)
    stored_tcs = _as_set(stored.player_data.allowed_time_controls)

    if requested != stored_tcs:
        return ConflictResolution(
            ConflictAction.DELETE_AND_RESTART,
            f"Time controls changed ({_fmt(stored_tcs)} -> {_fmt(requested)}); "
            "stats collected under different time controls cannot be merged",
        )

    cursor = stored.since_unix_ms
    if cursor is None:
        return ConflictResolution(
            ConflictAction.DELETE_AND_RESTART,
            "Existing checkpoint has no pagination cursor",
        )

    progress = f"{stored.fetch_progress} games so far"
    if existing.is_stale:
        progress += ", checkpoint is stale"
    if stored.is_complete:
        progress += ", previous run completed"

    if requested_since_unix_ms is None:
        reason = f"Resuming all available history older than {cursor} ({progress})"
    elif requested_since_unix_ms <= cursor:
        reason = (
            f"Requested since {requested_since_unix_ms} is not newer than cursor {cursor}; "
            f"continuing older games ({progress})"
        )
    else:
        covered = stored.newest_game_unix_ms
        coverage = f"{cursor}..{covered}" if covered is not None else f"{cursor}..now"
        reason = (
            f"Requested since {requested_since_unix_ms} is newer than cursor {cursor}; "
            f"checkpoint already covers {coverage} ({progress})"
        )
    return ConflictResolution(ConflictAction.RESUME, reason, existing=stored)
