"""Opening statistics accumulator.

Games are folded into `PlayerData.opening_stats` one at a time and then
dropped, so memory grows with the number of distinct openings (a few
hundred) and not with the number of games streamed (up to hundreds of
thousands). Each update is one dict lookup plus a few integer additions.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from recommender.schemas.stats import (
    Color,
    GameResult,
    InferencePayload,
    OpeningStatsPayload,
    PlayerData,
    RawOpeningStats,
    TimeControl,
)

_RESULT_FIELD = {
    GameResult.WIN: "num_wins",
    GameResult.DRAW: "num_draws",
    GameResult.LOSS: "num_losses",
}


def create_empty_player_data(
    lichess_username: str,
    rating: float,
    color: Color,
    allowed_time_controls: Sequence[TimeControl],
) -> PlayerData:
    return PlayerData(
        lichess_username=lichess_username,
        rating=rating,
        color=color,
        allowed_time_controls=list(allowed_time_controls),
        opening_stats={},
    )


def accumulate_opening_stats(
    player_data: PlayerData,
    opening_name: str,
    training_id: int,
    eco: str,
    result: GameResult,
    weight: int = 1,
) -> None:
    """Add one game's result to its opening, creating the entry if needed.

    `weight` counts towards games and towards exactly one of wins/draws/losses,
    so wins + draws + losses == games always holds.
    """
    if isinstance(weight, bool) or not isinstance(weight, int) or weight <= 0:
        raise ValueError(f"weight must be a positive integer (got {weight!r})")
    field_name = _RESULT_FIELD[GameResult(result)]

    existing = player_data.opening_stats.get(opening_name)
    if existing is not None:
        existing.num_games += weight
        setattr(existing, field_name, getattr(existing, field_name) + weight)
        return

    counts = {"num_wins": 0, "num_draws": 0, "num_losses": 0}
    counts[field_name] = weight
    player_data.opening_stats[opening_name] = RawOpeningStats(
        opening_name=opening_name,
        eco=eco,
        training_id=training_id,
        num_games=weight,
        **counts,
    )


def get_game_result(game: Mapping[str, Any], my_color: Color) -> GameResult:
    """No winner means a draw."""
    winner = game.get("winner")
    if not winner:
        return GameResult.DRAW
    return GameResult.WIN if winner == Color(my_color).value else GameResult.LOSS


def time_control_weight(speed: Any, weights: Mapping[str, int]) -> int:
    """Weight for a game's speed; unknown speeds count once."""
    return weights.get(str(speed), 1) if speed is not None else 1


def calculate_raw_score(stats: RawOpeningStats) -> float:
    """(wins + 0.5 * draws) / games."""
    if stats.num_games == 0:
        return 0.0
    return (stats.num_wins + 0.5 * stats.num_draws) / stats.num_games


def get_total_games(stats: Iterable[RawOpeningStats]) -> int:
    return sum(s.num_games for s in stats)


def convert_to_inference_payload(player_data: PlayerData) -> InferencePayload:
    return InferencePayload(
        name=player_data.lichess_username,
        rating=player_data.rating,
        side=player_data.color,
        opening_stats=[
            OpeningStatsPayload(
                opening_name=stat.opening_name,
                opening_id=stat.training_id,
                eco=stat.eco,
                num_games=stat.num_games,
                num_wins=stat.num_wins,
                num_draws=stat.num_draws,
                num_losses=stat.num_losses,
            )
            for stat in player_data.opening_stats.values()
        ],
    )
