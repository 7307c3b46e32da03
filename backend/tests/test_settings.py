from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

import recommender.core.settings as settings_module
from recommender.core.env import _parse_env_line, load_env_if_present
from recommender.core.settings import DEFAULT_SETTINGS_YAML, DEFAULT_STORAGE_URL, PipelineSettings, load_settings


def test_defaults():
    s = PipelineSettings()
    assert s.lichess_base_url == "https://lichess.org"
    assert s.max_games_to_fetch == 200_000
    assert s.batch_size == 5000
    assert s.save_every_n_games == 100
    assert s.max_retries == 5
    assert s.time_control_weights == {"blitz": 1, "rapid": 2, "classical": 3}
    assert "aborted" not in s.valid_statuses
    assert s.checkpoint_max_age_ms == 7 * 24 * 60 * 60 * 1000
    assert s.storage_url == DEFAULT_STORAGE_URL
    assert s.storage_url.startswith("sqlite:///")
    assert s.storage_url.endswith(".openingrec/checkpoints.db")


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        PipelineSettings(batch_size=6000)
    with pytest.raises(ValidationError):
        PipelineSettings(time_control_weights={"blitz": 0})
    with pytest.raises(ValidationError):
        PipelineSettings(unknown_knob=True)


def test_yaml_then_environment_overrides(tmp_path: Path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "pipeline:\n"
        "  inference_base_url: https://yaml.example/\n"
        "  max_games_to_fetch: 500\n"
        "  valid_statuses: [Mate, resign]\n",
        encoding="utf-8",
    )
    s = load_settings(path, environ={"COR_MAX_GAMES_TO_FETCH": "50", "COR_INFERENCE_TOKEN": "tok"})

    assert s.inference_base_url == "https://yaml.example"
    assert s.max_games_to_fetch == 50
    assert s.inference_api_token == "tok"
    assert s.valid_statuses == frozenset({"mate", "resign"})


def test_yaml_path_from_environment_and_flat_layout(tmp_path: Path):
    path = tmp_path / "flat.yaml"
    path.write_text("batch_size: 100\nstorage_url: sqlite:///x.db\n", encoding="utf-8")
    s = load_settings(environ={"COR_SETTINGS_YAML": str(path)})
    assert s.batch_size == 100
    assert s.storage_url == "sqlite:///x.db"


def test_bundled_yaml_is_read_when_no_path_is_given(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    assert DEFAULT_SETTINGS_YAML.name == "pipeline.yaml"
    assert DEFAULT_SETTINGS_YAML.parent.name == "config"

    bundled = tmp_path / "pipeline.yaml"
    bundled.write_text("pipeline:\n  batch_size: 7\n", encoding="utf-8")
    monkeypatch.setattr(settings_module, "DEFAULT_SETTINGS_YAML", bundled)

    assert load_settings(environ={}).batch_size == 7
    # An explicit file replaces the bundled one.
    other = tmp_path / "other.yaml"
    other.write_text("batch_size: 9\n", encoding="utf-8")
    assert load_settings(environ={"COR_SETTINGS_YAML": str(other)}).batch_size == 9

    monkeypatch.setattr(settings_module, "DEFAULT_SETTINGS_YAML", tmp_path / "missing.yaml")
    assert load_settings(environ={}).batch_size == 5000


def test_yaml_must_be_a_mapping(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path, environ={})


def test_shipped_sample_config_is_valid():
    sample = Path(__file__).resolve().parents[1] / "ingestion" / "config" / "pipeline.yaml"
    s = load_settings(sample, environ={})
    assert s.batch_size == 5000


def test_env_file_parsing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    assert _parse_env_line("export COR_STORAGE_URL='redis://localhost'") == ("COR_STORAGE_URL", "redis://localhost")
    assert _parse_env_line("# comment") is None
    assert _parse_env_line("novalue") is None

    env_file = tmp_path / ".env"
    env_file.write_text("COR_TEST_A=from-file\nCOR_TEST_B=from-file\n", encoding="utf-8")
    monkeypatch.setenv("COR_TEST_B", "from-process")
    monkeypatch.delenv("COR_TEST_A", raising=False)

    load_env_if_present(candidates=[env_file])

    assert os.environ["COR_TEST_A"] == "from-file"
    assert os.environ["COR_TEST_B"] == "from-process"
    monkeypatch.delenv("COR_TEST_A")
