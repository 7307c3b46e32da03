"""Game validation filters.

Each streamed game passes an ordered chain of checks; the first failure
rejects it and later checks are not evaluated. Cheapest and most
discriminating checks run first:

1. Rating delta between the two players (missing/non-numeric -> reject).
2. Structure: standard variant, enough plies, legitimate ending.
3. Opening present and known to the model (unknown openings can't be scored).

Rejections are data-quality signals, never errors: they only show up in
`ValidationStats`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

logger = logging.getLogger("openingrec.ingestion.filter")

Record = Mapping[str, Any]

MAX_RATING_DELTA_BETWEEN_PLAYERS = 100

# Six full moves.
MIN_NUM_PLY = 12

# Endings that reflect the players' play. Excludes aborts, cheat detection,
# server crashes and the like.
VALID_GAME_ENDING_STATUSES = frozenset({"mate", "resign", "stalemate", "timeout", "outoftime", "draw"})


class FilterDecision(str, Enum):
    PASS = "pass"
    REJECT_RATING = "reject_rating"
    REJECT_STRUCTURE = "reject_structure"
    REJECT_OPENING = "reject_opening"


@dataclass(frozen=True, slots=True)
class FilterResult:
    decision: FilterDecision
    reason: str

    @property
    def passed(self) -> bool:
        return self.decision == FilterDecision.PASS


@dataclass(frozen=True)
class GameValidationFilters:
    """Configuration for all game validation filters."""
    # Opening name -> training id, from the model artifacts.
    opening_names_to_training_ids: Mapping[str, int]
    max_rating_delta: int = MAX_RATING_DELTA_BETWEEN_PLAYERS
    min_num_plies: int = MIN_NUM_PLY
    valid_statuses: frozenset[str] = VALID_GAME_ENDING_STATUSES


@dataclass
class ValidationStats:
    """Per-run counters explaining why games were dropped."""
    total_games_processed: int = 0
    valid_games: int = 0
    filtered_by_rating: int = 0
    filtered_by_structure: int = 0
    filtered_by_opening: int = 0

    def record(self, result: FilterResult) -> None:
        self.total_games_processed += 1
        if result.decision == FilterDecision.PASS:
            self.valid_games += 1
        elif result.decision == FilterDecision.REJECT_RATING:
            self.filtered_by_rating += 1
        elif result.decision == FilterDecision.REJECT_STRUCTURE:
            self.filtered_by_structure += 1
        elif result.decision == FilterDecision.REJECT_OPENING:
            self.filtered_by_opening += 1

    @property
    def filter_rate(self) -> float:
        if self.total_games_processed == 0:
            return 0.0
        return (self.total_games_processed - self.valid_games) / self.total_games_processed * 100

    def log_summary(self) -> None:
        logger.info(
            "Game validation: processed=%d valid=%d filter_rate=%.1f%% "
            "by_rating=%d by_structure=%d by_opening=%d",
            self.total_games_processed,
            self.valid_games,
            self.filter_rate,
            self.filtered_by_rating,
            self.filtered_by_structure,
            self.filtered_by_opening,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_valid_rating_delta(white_rating: Any, black_rating: Any, max_rating_delta: int) -> bool:
    """True if both ratings are numbers at most `max_rating_delta` apart."""
    if not _is_number(white_rating) or not _is_number(black_rating):
        return False
    return abs(white_rating - black_rating) <= max_rating_delta


def is_valid_game_structure(
    variant: Any,
    clocks: Any,
    status: Any,
    *,
    min_num_plies: int = MIN_NUM_PLY,
    valid_statuses: frozenset[str] = VALID_GAME_ENDING_STATUSES,
) -> bool:
    # Exclude chess960, crazyhouse etc
    if str(variant).lower() != "standard":
        return False
    # One clock entry per ply. Don't use opening.ply: that is the opening's length.
    if not isinstance(clocks, (list, tuple)) or len(clocks) < min_num_plies:
        return False
    return isinstance(status, str) and status in valid_statuses


def opening_name_of(game: Record) -> Optional[str]:
    opening = game.get("opening")
    if not isinstance(opening, Mapping):
        return None
    name = opening.get("name")
    if not isinstance(name, str) or not name:
        return None
    return name


def is_valid_opening(game: Record, opening_names: Mapping[str, int]) -> bool:
    name = opening_name_of(game)
    if name is None:
        return False
    if name not in opening_names:
        logger.debug(f"Filtered out game {game.get('id')}: opening {name!r} not in training set")
        return False
    return True


def _player_rating(game: Record, side: str) -> Any:
    players = game.get("players")
    if not isinstance(players, Mapping):
        return None
    player = players.get(side)
    if not isinstance(player, Mapping):
        return None
    return player.get("rating")


def check_rating(game: Record, filters: GameValidationFilters) -> Optional[str]:
    white, black = _player_rating(game, "white"), _player_rating(game, "black")
    if is_valid_rating_delta(white, black, filters.max_rating_delta):
        return None
    return f"rating delta unusable or above {filters.max_rating_delta} ({white!r} vs {black!r})"


def check_structure(game: Record, filters: GameValidationFilters) -> Optional[str]:
    if is_valid_game_structure(
        game.get("variant"),
        game.get("clocks"),
        game.get("status"),
        min_num_plies=filters.min_num_plies,
        valid_statuses=filters.valid_statuses,
    ):
        return None
    return f"structure rejected (variant={game.get('variant')!r}, status={game.get('status')!r})"


def check_opening(game: Record, filters: GameValidationFilters) -> Optional[str]:
    if is_valid_opening(game, filters.opening_names_to_training_ids):
        return None
    return f"opening {opening_name_of(game)!r} unknown to the model"


# A check returns None when the game passes, else a rejection reason.
GameCheck = tuple[FilterDecision, Callable[[Record, GameValidationFilters], Optional[str]]]

DEFAULT_CHECKS: tuple[GameCheck, ...] = (
    (FilterDecision.REJECT_RATING, check_rating),
    (FilterDecision.REJECT_STRUCTURE, check_structure),
    (FilterDecision.REJECT_OPENING, check_opening),
)


class GameValidator:
    """Runs the check chain and keeps this run's `ValidationStats`."""

    def __init__(self, filters: GameValidationFilters, checks: Optional[Sequence[GameCheck]] = None) -> None:
        self.filters = filters
        self._checks = tuple(checks) if checks is not None else DEFAULT_CHECKS
        self.stats = ValidationStats()

    def check(self, game: Record) -> FilterResult:
        """Classify a game without touching the counters."""
        for decision, check in self._checks:
            reason = check(game, self.filters)
            if reason is not None:
                return FilterResult(decision=decision, reason=reason)
        return FilterResult(decision=FilterDecision.PASS, reason="Passed all filters")

    def is_valid(self, game: Record) -> bool:
        result = self.check(game)
        self.stats.record(result)
        return result.passed
