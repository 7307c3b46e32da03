"""Storage for inference results (recommendations).

Kept separate from raw stats checkpoints. Each set is keyed by
"username:color", usernames lowercased, with its own index key next to it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from recommender.schemas.checkpoint import RecommendationIndexEntry, StoredRecommendationData
from recommender.schemas.stats import Color, InferencePredictResponse
from recommender.services.kv_store import KeyValueStore, KeyValueStoreError

logger = logging.getLogger("openingrec.storage.recommendations")

# A save within this window counts as "recent".
RECENT_SAVE_WINDOW_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class SaveResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StoredRecommendationsCheck:
    exists: bool
    data: Optional[StoredRecommendationData] = None
    is_recent: bool = False


class RecommendationStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        key_prefix: str = "chess-opening-recommender",
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._kv = kv
        self._prefix = f"{key_prefix}:recommendations"
        self._index_prefix = f"{key_prefix}:recommendations-index:"
        self._clock = clock

    @staticmethod
    def _entry_id(username: str, color: Color) -> str:
        return f"{username.lower()}:{Color(color).value}"

    def _key(self, username: str, color: Color) -> str:
        return f"{self._prefix}:{self._entry_id(username, color)}"

    def _index_key(self, entry: str) -> str:
        return f"{self._index_prefix}{entry}"

    def save(self, username: str, color: Color, recommendations: InferencePredictResponse) -> SaveResult:
        stored = StoredRecommendationData(
            username=username,
            color=color,
            recommendations=recommendations,
            saved_at_unix_ms=self._clock(),
        )
        try:
            self._kv.set(self._key(username, color), stored.model_dump_json())
        except KeyValueStoreError as e:
            logger.error(f"Error saving recommendations: {e}")
            return SaveResult(success=False, error=str(e))

        index_entry = RecommendationIndexEntry(saved_at_unix_ms=stored.saved_at_unix_ms)
        try:
            self._kv.set(self._index_key(self._entry_id(username, color)), index_entry.model_dump_json())
        except KeyValueStoreError as e:
            logger.error(f"Error updating recommendations index: {e}")
        return SaveResult(success=True)

    def get(self, username: str, color: Color) -> StoredRecommendationsCheck:
        key = self._key(username, color)
        try:
            raw = self._kv.get(key)
        except KeyValueStoreError as e:
            logger.error(f"Error reading recommendations: {e}")
            return StoredRecommendationsCheck(exists=False)
        if not raw:
            return StoredRecommendationsCheck(exists=False)

        try:
            data = StoredRecommendationData.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Stored recommendations for {key} failed validation, deleting: {e}")
            self.delete(username, color)
            return StoredRecommendationsCheck(exists=False)

        is_recent = self._clock() - data.saved_at_unix_ms < RECENT_SAVE_WINDOW_MS
        return StoredRecommendationsCheck(exists=True, data=data, is_recent=is_recent)

    def delete(self, username: str, color: Color) -> bool:
        try:
            self._kv.delete(self._key(username, color))
            self._kv.delete(self._index_key(self._entry_id(username, color)))
        except KeyValueStoreError as e:
            logger.error(f"Error deleting recommendations: {e}")
            return False
        return True

    def list_entries(self) -> List[Tuple[str, int]]:
        """All ("username:color", saved_at) pairs, most recent first."""
        entries: List[Tuple[str, int]] = []
        try:
            for key in self._kv.keys(self._index_prefix):
                raw = self._kv.get(key)
                if not raw:
                    continue
                try:
                    index_entry = RecommendationIndexEntry.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning(f"Ignoring corrupted recommendations index entry {key}: {e}")
                    continue
                entries.append((key[len(self._index_prefix):], index_entry.saved_at_unix_ms))
        except KeyValueStoreError as e:
            logger.error(f"Error listing recommendations: {e}")
        return sorted(entries, key=lambda item: item[1], reverse=True)
