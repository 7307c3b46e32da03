"""
Checkpoint persistence for resumable streaming runs.

Keys (usernames lowercased):
- {prefix}:player:{username}:{color}   -> StoredPlayerData (JSON)
- {prefix}:index:{username}:{color}    -> CheckpointIndexEntry

Rules:
- Writes never raise. A failed save returns `SaveResult(success=False)` and
  the run carries on in memory.
- Reads validate the whole envelope. Anything that fails validation
  (corrupt JSON, broken counts, other schema version) is deleted and
  reported as absent. It is never repaired or partially trusted.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from recommender.schemas.checkpoint import CheckpointIndexEntry, StoredPlayerData
from recommender.schemas.stats import Color, PlayerData
from recommender.services.kv_store import KeyValueStore, KeyValueStoreError

logger = logging.getLogger("openingrec.storage.checkpoints")

MAX_AGE_MS_DEFAULT = 7 * 24 * 60 * 60 * 1000
STORAGE_QUOTA_WARNING_BYTES_DEFAULT = 5 * 1024 * 1024


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ExistingStatsCheck:
    """Result of looking up a checkpoint. Only `exists` is meaningful when absent."""
    exists: bool
    data: Optional[StoredPlayerData] = None
    is_stale: bool = False
    can_resume: bool = False


@dataclass(frozen=True, slots=True)
class SaveResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StoredPlayerSummary:
    username: str
    color: Color
    last_access_unix_ms: int
    is_stale: bool


@dataclass(frozen=True, slots=True)
class StorageInfo:
    num_used_bytes: int
    player_count: int
    is_near_quota: bool

    @property
    def num_used_mb(self) -> float:
        return self.num_used_bytes / 1024 / 1024


class CheckpointStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        key_prefix: str = "chess-opening-recommender",
        max_age_ms: int = MAX_AGE_MS_DEFAULT,
        quota_warning_bytes: int = STORAGE_QUOTA_WARNING_BYTES_DEFAULT,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._kv = kv
        self._prefix = key_prefix
        self._player_prefix = f"{key_prefix}:player:"
        self._index_prefix = f"{key_prefix}:index:"
        self._max_age_ms = max_age_ms
        self._quota_warning_bytes = quota_warning_bytes
        self._clock = clock

    @staticmethod
    def entry_id(username: str, color: Color) -> str:
        return f"{username.lower()}:{Color(color).value}"

    def player_key(self, username: str, color: Color) -> str:
        return f"{self._player_prefix}{self.entry_id(username, color)}"

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def _index_key(self, entry: str) -> str:
        return f"{self._index_prefix}{entry}"

    def _get_index_entry(self, entry: str) -> Optional[CheckpointIndexEntry]:
        try:
            raw = self._kv.get(self._index_key(entry))
            if raw:
                return CheckpointIndexEntry.model_validate_json(raw)
        except KeyValueStoreError as e:
            logger.error(f"Error reading checkpoint index for {entry}: {e}")
        except ValidationError as e:
            logger.warning(f"Checkpoint index entry {entry} is corrupted, replacing: {e}")
        return None

    def _index(self) -> Dict[str, CheckpointIndexEntry]:
        """All readable index entries, keyed by "username:color"."""
        try:
            keys = self._kv.keys(self._index_prefix)
        except KeyValueStoreError as e:
            logger.error(f"Error listing checkpoint index: {e}")
            return {}
        entries: Dict[str, CheckpointIndexEntry] = {}
        for key in keys:
            entry = key[len(self._index_prefix):]
            found = self._get_index_entry(entry)
            if found is not None:
                entries[entry] = found
        return entries

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def load(self, username: str, color: Color) -> ExistingStatsCheck:
        """Look up the checkpoint for (username, color)."""
        key = self.player_key(username, color)
        try:
            raw = self._kv.get(key)
        except KeyValueStoreError as e:
            logger.error(f"Error reading checkpoint {key}: {e}")
            return ExistingStatsCheck(exists=False)

        if not raw:
            return ExistingStatsCheck(exists=False)

        try:
            stored = StoredPlayerData.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Stored checkpoint {key} failed validation, deleting: {e}")
            self.delete(username, color)
            return ExistingStatsCheck(exists=False)

        age = self._clock() - stored.last_fetched_unix_ms
        return ExistingStatsCheck(
            exists=True,
            data=stored,
            is_stale=age > self._max_age_ms,
            can_resume=not stored.is_complete,
        )

    def save(
        self,
        player_data: PlayerData,
        *,
        fetch_progress: int,
        is_complete: bool,
        since_unix_ms: Optional[int] = None,
        newest_game_unix_ms: Optional[int] = None,
        last_fetched_unix_ms: Optional[int] = None,
    ) -> SaveResult:
        """Write the full envelope for `player_data`'s (username, color)."""
        now = self._clock()
        username, color = player_data.lichess_username, player_data.color
        entry = self.entry_id(username, color)
        previous = self._get_index_entry(entry)
        created_at = previous.created_at_unix_ms if previous is not None else now
        try:
            stored = StoredPlayerData(
                player_data=player_data,
                last_fetched_unix_ms=last_fetched_unix_ms if last_fetched_unix_ms is not None else now,
                since_unix_ms=since_unix_ms,
                newest_game_unix_ms=newest_game_unix_ms,
                fetch_progress=fetch_progress,
                is_complete=is_complete,
                created_at_unix_ms=created_at,
            )
            payload = stored.model_dump_json()
        except ValidationError as e:
            logger.error(f"Refusing to save invalid checkpoint: {e}")
            return SaveResult(success=False, error=str(e))

        key = self.player_key(username, color)
        try:
            self._kv.set(key, payload)
        except KeyValueStoreError as e:
            logger.error(f"Error saving checkpoint {key}: {e}")
            return SaveResult(success=False, error=str(e))

        index_entry = CheckpointIndexEntry(
            created_at_unix_ms=created_at,
            last_access_unix_ms=now,
            entry_bytes=len(key.encode("utf-8")) + len(payload.encode("utf-8")),
        )
        try:
            self._kv.set(self._index_key(entry), index_entry.model_dump_json())
        except KeyValueStoreError as e:
            logger.error(f"Error updating checkpoint index for {entry}: {e}")

        used = self.storage_info().num_used_bytes
        if used > self._quota_warning_bytes:
            logger.warning(f"Storage usage ({used / 1024 / 1024:.2f}MB) exceeds warning threshold")
        return SaveResult(success=True)

    def delete(self, username: str, color: Color) -> bool:
        """Remove one checkpoint and its index entry. False on storage failure."""
        entry = self.entry_id(username, color)
        try:
            self._kv.delete(self.player_key(username, color))
            self._kv.delete(self._index_key(entry))
        except KeyValueStoreError as e:
            logger.error(f"Error deleting checkpoint: {e}")
            return False
        return True

    def delete_all(self) -> bool:
        """Delete every checkpoint plus the index (this namespace only)."""
        try:
            for prefix in (self._player_prefix, self._index_prefix):
                for key in self._kv.keys(prefix):
                    self._kv.delete(key)
        except KeyValueStoreError as e:
            logger.error(f"Error deleting all checkpoints: {e}")
            return False
        return True

    def list_players(self) -> List[StoredPlayerSummary]:
        now = self._clock()
        summaries: List[StoredPlayerSummary] = []
        for entry, index_entry in self._index().items():
            username, _, color = entry.rpartition(":")
            try:
                parsed_color = Color(color)
            except ValueError:
                logger.warning(f"Ignoring malformed checkpoint index entry {entry!r}")
                continue
            summaries.append(
                StoredPlayerSummary(
                    username=username,
                    color=parsed_color,
                    last_access_unix_ms=index_entry.last_access_unix_ms,
                    is_stale=now - index_entry.last_access_unix_ms > self._max_age_ms,
                )
            )
        return summaries

    def storage_info(self) -> StorageInfo:
        index = self._index()
        used = sum(e.entry_bytes for e in index.values())
        return StorageInfo(
            num_used_bytes=used,
            player_count=len(index),
            is_near_quota=used > self._quota_warning_bytes,
        )
