"""Rating selection and progress estimate from a Lichess profile."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Sequence

from recommender.schemas.lichess import LichessPerformance, LichessRatingInfo, LichessUserProfile
from recommender.schemas.stats import TimeControl

# Below this RD a rating is trustworthy.
RELIABLE_RD_THRESHOLD = 110
# Rapid wins over an unreliable blitz rating when its RD is this much lower.
RD_THRESHOLD_DIFFERENCE = 20


@dataclass(frozen=True, slots=True)
class RatingSelection:
    is_valid: bool
    rating: float = 0.0
    time_control: Optional[TimeControl] = None
    rating_deviation: Optional[float] = None
    reason: Optional[str] = None  # "no_ratings" when invalid


def _is_reliable(info: Optional[LichessRatingInfo]) -> bool:
    return info is not None and info.rd < RELIABLE_RD_THRESHOLD


def _selected(info: LichessRatingInfo, tc: TimeControl) -> RatingSelection:
    return RatingSelection(is_valid=True, rating=info.rating, time_control=tc, rating_deviation=info.rd)


def select_player_rating(perfs: LichessPerformance) -> RatingSelection:
    """
    Pick the most trustworthy rating.

    1. Blitz, if reliable.
    2. Rapid, if its RD is more than RD_THRESHOLD_DIFFERENCE below blitz's.
    3. Classical, if reliable while blitz and rapid are not.
    4. Otherwise the first that exists of blitz, rapid, classical.
    """
    blitz, rapid, classical = perfs.blitz, perfs.rapid, perfs.classical

    if blitz is None and rapid is None and classical is None:
        return RatingSelection(is_valid=False, reason="no_ratings")

    if blitz is not None and _is_reliable(blitz):
        return _selected(blitz, TimeControl.BLITZ)

    if blitz is not None and rapid is not None and rapid.rd < blitz.rd - RD_THRESHOLD_DIFFERENCE:
        return _selected(rapid, TimeControl.RAPID)

    if classical is not None and _is_reliable(classical) and not _is_reliable(blitz) and not _is_reliable(rapid):
        return _selected(classical, TimeControl.CLASSICAL)

    for info, tc in ((blitz, TimeControl.BLITZ), (rapid, TimeControl.RAPID), (classical, TimeControl.CLASSICAL)):
        if info is not None:
            return _selected(info, tc)
    # unreachable: at least one perf exists
    return RatingSelection(is_valid=False, reason="no_ratings")


def estimate_num_games_to_stream(
    profile: LichessUserProfile,
    allowed_time_controls: Sequence[TimeControl],
    since_unix_ms: Optional[int] = None,
    *,
    now_unix_ms: Optional[int] = None,
) -> int:
    """Rough number of games for one colour, used as the progress denominator."""
    total = 0
    for tc in allowed_time_controls:
        info = getattr(profile.perfs, TimeControl(tc).value)
        total += info.games if info is not None else 0

    # Only the chosen colour's games are streamed.
    estimate = total // 2

    if since_unix_ms is not None:
        now = now_unix_ms if now_unix_ms is not None else int(time.time() * 1000)
        account_age_ms = now - profile.created_at
        since_window_ms = now - since_unix_ms
        if account_age_ms > 0 and since_window_ms > 0:
            proportion = min(1.0, since_window_ms / account_age_ms)
            estimate = int(estimate * proportion)

    return max(1, estimate)
