"""
Memory sampling for long streaming runs.

Traced memory should plateau with the number of distinct openings (a few
hundred), not climb with the number of games processed. Linear growth
against games means something is holding on to game records.
"""

from __future__ import annotations

import logging
import tracemalloc
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger("openingrec.ingestion.memory")


@dataclass(frozen=True, slots=True)
class MemorySample:
    games_processed: int
    num_openings: int
    current_bytes: int
    peak_bytes: int


class MemoryMonitor:
    def __init__(self, enabled: bool, sample_interval_games: int = 1000) -> None:
        if sample_interval_games <= 0:
            raise ValueError("sample_interval_games must be > 0")
        self.enabled = enabled
        self.sample_interval_games = sample_interval_games
        self.samples: List[MemorySample] = []
        self._started_tracing = False

    def start(self) -> None:
        if self.enabled and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True

    def stop(self) -> None:
        # Only stop tracing we started ourselves.
        if self._started_tracing:
            tracemalloc.stop()
            self._started_tracing = False

    def check(self, games_processed: int, num_openings: int) -> Optional[MemorySample]:
        """Sample and log every `sample_interval_games` games; None otherwise."""
        if not self.enabled or games_processed % self.sample_interval_games != 0:
            return None
        if not tracemalloc.is_tracing():
            return None

        current, peak = tracemalloc.get_traced_memory()
        sample = MemorySample(
            games_processed=games_processed,
            num_openings=num_openings,
            current_bytes=current,
            peak_bytes=peak,
        )
        self.samples.append(sample)
        logger.info(
            f"[Memory] Games: {games_processed} | Openings: {num_openings} | "
            f"Current: {current / 1024 / 1024:.1f}MB | Peak: {peak / 1024 / 1024:.1f}MB"
        )
        return sample

    def __enter__(self) -> "MemoryMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
