from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from conftest import ALL_TCS, make_game
from ingestion.core.opening_stats import (
    accumulate_opening_stats,
    calculate_raw_score,
    convert_to_inference_payload,
    create_empty_player_data,
    get_game_result,
    get_total_games,
    time_control_weight,
)
from recommender.schemas.stats import Color, GameResult, PlayerData, RawOpeningStats


def _empty(color: Color = Color.WHITE) -> PlayerData:
    return create_empty_player_data("Alice", 1500, color, ALL_TCS)


def test_new_opening_gets_weighted_single_outcome():
    data = _empty()
    accumulate_opening_stats(data, "Sicilian Defense", 0, "B20", GameResult.WIN, weight=2)

    stats = data.opening_stats["Sicilian Defense"]
    assert (stats.num_games, stats.num_wins, stats.num_draws, stats.num_losses) == (2, 2, 0, 0)
    assert stats.training_id == 0
    assert stats.eco == "B20"


def test_existing_opening_increments_in_place():
    data = _empty()
    accumulate_opening_stats(data, "Italian Game", 1, "C50", GameResult.DRAW, weight=1)
    first = data.opening_stats["Italian Game"]
    accumulate_opening_stats(data, "Italian Game", 1, "C50", GameResult.LOSS, weight=3)

    assert data.opening_stats["Italian Game"] is first
    assert (first.num_games, first.num_wins, first.num_draws, first.num_losses) == (4, 0, 1, 3)


@pytest.mark.parametrize("weight", [0, -1, 1.5, True])
def test_weight_must_be_positive_integer(weight):
    with pytest.raises(ValueError):
        accumulate_opening_stats(_empty(), "Italian Game", 1, "C50", GameResult.WIN, weight=weight)


def test_accumulation_is_order_independent():
    names = [("Sicilian Defense", 0, "B20"), ("Italian Game", 1, "C50"), ("French Defense", 2, "C00")]
    rng = random.Random(11)
    updates = [(rng.choice(names), rng.choice(list(GameResult)), rng.randint(1, 3)) for _ in range(500)]

    forward, backward = _empty(), _empty()
    for (name, tid, eco), result, weight in updates:
        accumulate_opening_stats(forward, name, tid, eco, result, weight)
    for (name, tid, eco), result, weight in reversed(updates):
        accumulate_opening_stats(backward, name, tid, eco, result, weight)

    assert forward.model_dump() == backward.model_dump()
    for name, _tid, _eco in names:
        stats = forward.opening_stats[name]
        expected_games = sum(w for (n, _, _), _r, w in updates if n == name)
        assert stats.num_games == expected_games
        assert stats.num_wins + stats.num_draws + stats.num_losses == stats.num_games
    assert get_total_games(forward.opening_stats.values()) == sum(w for _u, _r, w in updates)


def test_aggregate_size_tracks_distinct_openings_not_games():
    data = _empty()
    names = [f"Opening {i}" for i in range(40)]
    sizes = []
    for n in range(1, 20_001):
        name = names[n % len(names)]
        accumulate_opening_stats(data, name, n % len(names), "A00", GameResult.WIN)
        if n % 5000 == 0:
            sizes.append(len(data.opening_stats))
    assert sizes == [40, 40, 40, 40]
    assert get_total_games(data.opening_stats.values()) == 20_000


def test_game_result_from_subject_perspective():
    assert get_game_result(make_game(winner="white"), Color.WHITE) == GameResult.WIN
    assert get_game_result(make_game(winner="black"), Color.WHITE) == GameResult.LOSS
    assert get_game_result(make_game(winner="black"), Color.BLACK) == GameResult.WIN
    assert get_game_result(make_game(winner=None), Color.BLACK) == GameResult.DRAW


def test_time_control_weights():
    weights = {"blitz": 1, "rapid": 2, "classical": 3}
    assert time_control_weight("classical", weights) == 3
    assert time_control_weight("bullet", weights) == 1
    assert time_control_weight(None, weights) == 1


def test_raw_score():
    stats = RawOpeningStats(
        opening_name="Italian Game", eco="C50", training_id=1, num_games=4, num_wins=2, num_draws=1, num_losses=1
    )
    assert calculate_raw_score(stats) == 0.625
    empty = RawOpeningStats(
        opening_name="Italian Game", eco="C50", training_id=1, num_games=0, num_wins=0, num_draws=0, num_losses=0
    )
    assert calculate_raw_score(empty) == 0.0


def test_counts_that_do_not_add_up_are_rejected():
    with pytest.raises(ValidationError):
        RawOpeningStats(
            opening_name="Italian Game", eco="C50", training_id=1, num_games=3, num_wins=1, num_draws=1, num_losses=0
        )


def test_player_data_requires_time_controls():
    with pytest.raises(ValidationError):
        create_empty_player_data("Alice", 1500, Color.WHITE, [])


def test_inference_payload_shape():
    data = _empty(Color.BLACK)
    accumulate_opening_stats(data, "French Defense", 2, "C00", GameResult.WIN, weight=3)

    payload = convert_to_inference_payload(data).model_dump(mode="json")
    assert payload == {
        "name": "Alice",
        "rating": 1500.0,
        "side": "black",
        "opening_stats": [
            {
                "opening_name": "French Defense",
                "opening_id": 2,
                "eco": "C00",
                "num_games": 3,
                "num_wins": 3,
                "num_draws": 0,
                "num_losses": 0,
            }
        ],
    }
