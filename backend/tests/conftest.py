from __future__ import annotations

import fnmatch
import json
import random
import sys
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/` packages are importable as top-level `recommender` / `ingestion` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from ingestion.core.network_client import BackoffFetcher  # noqa: E402
from recommender.schemas.stats import Color, TimeControl  # noqa: E402
from recommender.services.kv_store import MemoryKeyValueStore  # noqa: E402


OPENINGS = {"Sicilian Defense": 0, "Italian Game": 1, "French Defense": 2}

# 2024-01-01T00:00:00Z
T0 = 1704067200000


def make_game(
    *,
    game_id: str = "g1",
    created_at: int = T0,
    opening: str | None = "Sicilian Defense",
    eco: str = "B20",
    winner: str | None = "white",
    speed: str = "blitz",
    white_rating: Any = 1500,
    black_rating: Any = 1520,
    variant: str = "standard",
    status: str = "resign",
    num_plies: int = 40,
) -> dict[str, Any]:
    """Lichess game export record (moves=false, opening=true, clocks=true)."""
    game: dict[str, Any] = {
        "id": game_id,
        "rated": True,
        "variant": variant,
        "speed": speed,
        "perf": speed,
        "createdAt": created_at,
        "lastMoveAt": created_at + 600_000,
        "status": status,
        "players": {
            "white": {"user": {"name": "alice", "id": "alice"}, "rating": white_rating},
            "black": {"user": {"name": "bob", "id": "bob"}, "rating": black_rating},
        },
        "clocks": [18000 - i for i in range(num_plies)],
    }
    if winner is not None:
        game["winner"] = winner
    if opening is not None:
        game["opening"] = {"eco": eco, "name": opening, "ply": 4}
    return game


def ndjson(games: Iterable[dict[str, Any]]) -> bytes:
    return "".join(json.dumps(g, ensure_ascii=False) + "\n" for g in games).encode("utf-8")


def make_profile(
    *,
    username: str = "alice",
    created_at: int = T0 - 365 * 24 * 3600 * 1000,
    blitz: dict[str, Any] | None = None,
    rapid: dict[str, Any] | None = None,
    classical: dict[str, Any] | None = None,
) -> dict[str, Any]:
    perfs: dict[str, Any] = {}
    if blitz is not None:
        perfs["blitz"] = blitz
    if rapid is not None:
        perfs["rapid"] = rapid
    if classical is not None:
        perfs["classical"] = classical
    return {"id": username.lower(), "username": username, "createdAt": created_at, "perfs": perfs}


def make_predict_response(side: str = "white") -> dict[str, Any]:
    return {
        "request_id": "req-1",
        "side": side,
        "recommendations": [
            {"opening_name": "Italian Game", "eco": "C50", "predicted_score": 0.61},
            {"opening_name": "Sicilian Defense", "eco": "B20", "predicted_score": 0.54},
        ],
        "stats": {
            "num_openings_total": 2,
            "num_openings_played": 1,
            "num_openings_unplayed": 1,
            "predicted_min": 0.54,
            "predicted_max": 0.61,
            "predicted_mean": 0.575,
        },
        "model_loaded": True,
        "model_version": "test",
    }


class SleepRecorder:
    """Injected in place of asyncio.sleep; records waits instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_fetcher(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    max_retries: int = 5,
    sleep: SleepRecorder | None = None,
    seed: int = 7,
) -> BackoffFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BackoffFetcher(
        client,
        max_retries=max_retries,
        base_delay_seconds=1.0,
        sleep=sleep or SleepRecorder(),
        rng=random.Random(seed),
    )


class FakeRedis:
    """Just enough of redis.Redis for RedisKeyValueStore (bytes in, bytes out)."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value.encode("utf-8")
        return True

    def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def scan_iter(self, match: str | None = None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key.encode("utf-8")


@pytest.fixture()
def memory_kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def artifacts_dir(tmp_path: Path) -> Path:
    for color in (Color.WHITE, Color.BLACK):
        (tmp_path / f"opening_name_to_training_id_{color.value}.json").write_text(
            json.dumps(OPENINGS), encoding="utf-8"
        )
    return tmp_path


ALL_TCS = [TimeControl.BLITZ, TimeControl.RAPID, TimeControl.CLASSICAL]
