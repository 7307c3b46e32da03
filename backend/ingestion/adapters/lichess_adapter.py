from __future__ import annotations

"""Lichess adapter.

Scope:
- Fetch a user's public profile and pick the rating to analyse with.
- Stream a user's rated games as NDJSON, one decoded game at a time.

Every request goes through `BackoffFetcher`. HTTP failures that survive the
retry budget are raised as typed `FetchError`s carrying a message that can be
shown to the user as-is.

API reference: https://lichess.org/api#tag/Games/operation/apiGamesUser
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ingestion.core.errors import (
    FetchError,
    InvalidResponseError,
    NoRatingError,
    RateLimitedError,
    UpstreamServerError,
    UserNotFoundError,
)
from ingestion.core.network_client import BackoffFetcher, RetryCallback
from ingestion.core.rating import RatingSelection, select_player_rating
from ingestion.core.request import time_controls_param
from ingestion.core.stream_decoder import iter_ndjson
from recommender.schemas.lichess import LichessUserProfile
from recommender.schemas.stats import Color, TimeControl

logger = logging.getLogger("openingrec.ingestion.lichess")

LICHESS_BASE_URL_DEFAULT = "https://lichess.org"
NDJSON_CONTENT_TYPE = "application/x-ndjson"


@dataclass(frozen=True, slots=True)
class UserRatingAndProfile:
    profile: LichessUserProfile
    selection: RatingSelection

    @property
    def rating(self) -> float:
        return self.selection.rating


@dataclass(frozen=True, slots=True)
class GameStreamParams:
    username: str
    color: Color
    time_controls: Sequence[TimeControl]
    max_games: int
    since_unix_ms: Optional[int] = None
    until_unix_ms: Optional[int] = None

    def to_query(self) -> Dict[str, str]:
        params = {
            "rated": "true",
            "perfType": time_controls_param(self.time_controls),
            "max": str(self.max_games),
            "moves": "false",
            "opening": "true",
            "tags": "false",
            # One clock entry per ply; the structure filter counts them.
            "clocks": "true",
            "color": Color(self.color).value,
        }
        if self.since_unix_ms is not None:
            params["since"] = str(self.since_unix_ms)
        if self.until_unix_ms is not None:
            params["until"] = str(self.until_unix_ms)
        return params


def _raise_for_status(response: httpx.Response, username: str, what: str) -> None:
    status = response.status_code
    if response.is_success:
        return
    if status == 404:
        raise UserNotFoundError(
            f'User "{username}" not found on Lichess. Please check the username and try again.',
            status_code=status,
        )
    if status == 429:
        raise RateLimitedError("Too many requests. Please wait a moment and try again.", status_code=status)
    if status >= 500:
        raise UpstreamServerError("Lichess server error. Please try again later.", status_code=status)
    raise FetchError(f"Failed to fetch {what}: {status} {response.reason_phrase}", status_code=status)


class LichessClient:
    def __init__(self, fetcher: BackoffFetcher, *, base_url: str = LICHESS_BASE_URL_DEFAULT) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")

    def _user_url(self, username: str) -> str:
        return f"{self._base_url}/api/user/{quote(username, safe='')}"

    def _games_url(self, username: str) -> str:
        return f"{self._base_url}/api/games/user/{quote(username, safe='')}"

    async def fetch_user_profile(
        self, username: str, *, on_retry: Optional[RetryCallback] = None
    ) -> LichessUserProfile:
        try:
            response = await self._fetcher.send("GET", self._user_url(username), on_retry=on_retry)
        except httpx.RequestError as e:
            raise FetchError(f"Network error while fetching Lichess profile: {e}") from e

        _raise_for_status(response, username, "user profile")
        try:
            return LichessUserProfile.model_validate_json(response.content)
        except ValidationError as e:
            raise InvalidResponseError(f"Invalid Lichess API response: {e}", status_code=response.status_code) from e

    async def fetch_user_rating_and_profile(
        self, username: str, *, on_retry: Optional[RetryCallback] = None
    ) -> UserRatingAndProfile:
        """Profile plus the selected rating; raises NoRatingError if there is none."""
        profile = await self.fetch_user_profile(username, on_retry=on_retry)
        selection = select_player_rating(profile.perfs)
        if not selection.is_valid:
            raise NoRatingError(f"User {username} has no rated games in standard time controls.")
        logger.info(f"Selected {selection.time_control.value} rating: {selection.rating}")
        return UserRatingAndProfile(profile=profile, selection=selection)

    async def stream_games(
        self, params: GameStreamParams, *, on_retry: Optional[RetryCallback] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield games newest -> oldest as they arrive.

        The response is closed when the generator finishes or is closed early
        (use `contextlib.aclosing` when breaking out of the loop).
        """
        try:
            response = await self._fetcher.send(
                "GET",
                self._games_url(params.username),
                params=params.to_query(),
                headers={"Accept": NDJSON_CONTENT_TYPE},
                stream=True,
                on_retry=on_retry,
            )
        except httpx.RequestError as e:
            raise FetchError(f"Network error while fetching games: {e}") from e

        try:
            _raise_for_status(response, params.username, "games")
            async for game in iter_ndjson(response.aiter_bytes()):
                yield game
        except httpx.HTTPError as e:
            raise FetchError(f"Game stream interrupted: {e}") from e
        finally:
            await response.aclose()
