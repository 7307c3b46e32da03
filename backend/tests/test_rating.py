from __future__ import annotations

from conftest import T0, make_profile
from ingestion.core.rating import estimate_num_games_to_stream, select_player_rating
from recommender.schemas.lichess import LichessPerformance, LichessUserProfile
from recommender.schemas.stats import TimeControl


def _perfs(**kwargs) -> LichessPerformance:
    return LichessPerformance.model_validate(
        {tc: {"games": games, "rating": rating, "rd": rd} for tc, (rating, rd, games) in kwargs.items()}
    )


def test_reliable_blitz_preferred():
    selection = select_player_rating(_perfs(blitz=(1600, 60, 500), rapid=(1700, 45, 100)))
    assert selection.is_valid
    assert selection.time_control == TimeControl.BLITZ
    assert selection.rating == 1600


def test_rapid_used_when_much_more_reliable_than_blitz():
    selection = select_player_rating(_perfs(blitz=(1600, 150, 10), rapid=(1700, 129, 100)))
    assert selection.time_control == TimeControl.RAPID

    # Exactly 20 lower is not enough.
    selection = select_player_rating(_perfs(blitz=(1600, 150, 10), rapid=(1700, 130, 100)))
    assert selection.time_control == TimeControl.BLITZ


def test_classical_used_when_only_reliable_rating():
    selection = select_player_rating(_perfs(blitz=(1600, 150, 10), rapid=(1700, 140, 5), classical=(1800, 80, 90)))
    assert selection.time_control == TimeControl.CLASSICAL
    assert selection.rating_deviation == 80


def test_fallbacks_when_nothing_is_reliable():
    assert select_player_rating(_perfs(blitz=(1600, 300, 1), classical=(1800, 200, 1))).time_control == TimeControl.BLITZ
    assert select_player_rating(_perfs(rapid=(1700, 300, 1), classical=(1800, 200, 1))).time_control == TimeControl.RAPID
    assert select_player_rating(_perfs(classical=(1800, 200, 1))).time_control == TimeControl.CLASSICAL


def test_no_ratings_is_invalid():
    selection = select_player_rating(LichessPerformance())
    assert not selection.is_valid
    assert selection.reason == "no_ratings"


def _profile(created_at: int) -> LichessUserProfile:
    return LichessUserProfile.model_validate(
        make_profile(
            created_at=created_at,
            blitz={"games": 1000, "rating": 1600, "rd": 50},
            rapid={"games": 401, "rating": 1650, "rd": 60},
            classical={"games": 50, "rating": 1700, "rd": 90},
        )
    )


def test_estimate_halves_selected_time_controls():
    profile = _profile(T0 - 1000 * 86_400_000)
    assert estimate_num_games_to_stream(profile, [TimeControl.BLITZ, TimeControl.RAPID]) == 700
    assert estimate_num_games_to_stream(profile, [TimeControl.CLASSICAL]) == 25


def test_estimate_scales_by_since_window():
    now = T0
    profile = _profile(now - 1000)
    assert estimate_num_games_to_stream(profile, [TimeControl.BLITZ], since_unix_ms=now - 250, now_unix_ms=now) == 125
    # A window longer than the account is capped at the whole history.
    assert estimate_num_games_to_stream(profile, [TimeControl.BLITZ], since_unix_ms=now - 5000, now_unix_ms=now) == 500
    # A future since is ignored.
    assert estimate_num_games_to_stream(profile, [TimeControl.BLITZ], since_unix_ms=now + 10, now_unix_ms=now) == 500


def test_estimate_never_below_one():
    profile = LichessUserProfile.model_validate(make_profile())
    assert estimate_num_games_to_stream(profile, [TimeControl.BLITZ]) == 1
