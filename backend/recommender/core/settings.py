"""Pipeline configuration.

Every recognised knob is enumerated here with its default so that the
collaborators never read loose dictionaries. Values come from, in order:
field defaults, a YAML file (`ingestion/config/pipeline.yaml` unless another
is given), then `COR_*` environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from recommender.core.env import load_env_if_present


SETTINGS_YAML_ENV = "COR_SETTINGS_YAML"

DEFAULT_VALID_STATUSES: FrozenSet[str] = frozenset(
    {"mate", "resign", "stalemate", "timeout", "outoftime", "draw"}
)

# Slower games are higher quality data points, so they count for more.
DEFAULT_TIME_CONTROL_WEIGHTS: Dict[str, int] = {"blitz": 1, "rapid": 2, "classical": 3}

DEFAULT_ARTIFACTS_DIR = Path(__file__).resolve().parents[2] / "ingestion" / "config" / "model_artifacts"
DEFAULT_SETTINGS_YAML = Path(__file__).resolve().parents[2] / "ingestion" / "config" / "pipeline.yaml"

# Persistent by default; memory:// keeps checkpoints for one process only.
DEFAULT_DATA_DIR = Path.home() / ".openingrec"
DEFAULT_STORAGE_URL = "sqlite:///" + (DEFAULT_DATA_DIR / "checkpoints.db").as_posix()

# Environment variable -> settings field.
_ENV_OVERRIDES: Dict[str, str] = {
    "COR_LICHESS_BASE_URL": "lichess_base_url",
    "COR_INFERENCE_URL": "inference_base_url",
    "COR_INFERENCE_TOKEN": "inference_api_token",
    "COR_STORAGE_URL": "storage_url",
    "COR_ARTIFACTS_DIR": "artifacts_dir",
    "COR_MAX_GAMES_TO_FETCH": "max_games_to_fetch",
    "COR_MAX_RETRIES": "max_retries",
    "COR_REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "COR_TRACK_MEMORY": "track_memory",
}


class PipelineSettings(BaseModel):
    """Validated configuration for one pipeline deployment."""

    # Upstream / downstream services
    lichess_base_url: str = "https://lichess.org"
    inference_base_url: Optional[str] = None
    inference_api_token: Optional[str] = None

    # Streaming
    max_games_to_fetch: int = Field(default=200_000, gt=0)
    batch_size: int = Field(default=5000, gt=0, le=5000)
    save_every_n_games: int = Field(default=100, gt=0)

    # Validation filters
    max_rating_delta: int = Field(default=100, ge=0)
    min_num_plies: int = Field(default=12, ge=0)
    valid_statuses: FrozenSet[str] = DEFAULT_VALID_STATUSES
    time_control_weights: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_TIME_CONTROL_WEIGHTS)
    )

    # Network
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=5, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)

    # Persistence
    storage_url: str = DEFAULT_STORAGE_URL
    key_prefix: str = Field(default="chess-opening-recommender", min_length=1)
    checkpoint_max_age_days: float = Field(default=7, gt=0)
    storage_quota_warning_bytes: int = Field(default=5 * 1024 * 1024, gt=0)

    # Reference data
    artifacts_dir: Path = DEFAULT_ARTIFACTS_DIR

    # Diagnostics
    track_memory: bool = False
    memory_sample_interval: int = Field(default=250, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("lichess_base_url", "inference_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v.rstrip("/") or None

    @field_validator("time_control_weights")
    @classmethod
    def _positive_weights(cls, v: Dict[str, int]) -> Dict[str, int]:
        for tc, weight in v.items():
            if weight <= 0:
                raise ValueError(f"weight for {tc!r} must be a positive integer (got {weight})")
        return v

    @field_validator("valid_statuses", mode="before")
    @classmethod
    def _lowercase_statuses(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(str(s).strip().lower() for s in v)
        return v

    @property
    def checkpoint_max_age_ms(self) -> int:
        return int(self.checkpoint_max_age_days * 24 * 60 * 60 * 1000)


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid settings file {path}: expected a top-level mapping.")
    # Allow either a flat mapping or one nested under `pipeline:`.
    section = raw.get("pipeline", raw)
    if not isinstance(section, dict):
        raise ValueError(f"Invalid settings file {path}: 'pipeline' must be a mapping.")
    return dict(section)


def load_settings(path: Optional[Path] = None, *, environ: Optional[dict[str, str]] = None) -> PipelineSettings:
    """Build settings from YAML (optional) plus environment overrides."""
    if environ is None:
        load_env_if_present()
        environ = dict(os.environ)

    values: dict[str, Any] = {}
    # Config path: backend/ingestion/config/pipeline.yaml by default.
    if path is not None:
        values.update(_read_yaml(path))
    elif environ.get(SETTINGS_YAML_ENV):
        values.update(_read_yaml(Path(environ[SETTINGS_YAML_ENV])))
    elif DEFAULT_SETTINGS_YAML.is_file():
        values.update(_read_yaml(DEFAULT_SETTINGS_YAML))

    for env_key, field_name in _ENV_OVERRIDES.items():
        raw = environ.get(env_key)
        if raw is not None and raw.strip() != "":
            values[field_name] = raw.strip()

    return PipelineSettings(**values)
