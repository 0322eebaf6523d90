"""Tests for configuration module."""

from pathlib import Path

import pytest

from repometrics.sync.config import SyncConfig


def test_config_defaults():
    """Test that SyncConfig can be created with defaults."""
    config = SyncConfig()
    assert config.reschedule_interval_seconds == 3600
    assert config.base_url == "https://api.github.com"
    assert config.secondary_rate_limit_backoff == [60, 120, 300]


def test_db_path_is_coerced():
    config = SyncConfig(db_path="some/where.db")
    assert isinstance(config.db_path, Path)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reschedule_interval_seconds": 0},
        {"poll_interval_seconds": -1},
        {"secondary_rate_limit_backoff": []},
    ],
)
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ValueError):
        SyncConfig(**kwargs)


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("REPOMETRICS_DB_PATH", str(tmp_path / "m.db"))
    monkeypatch.setenv("REPOMETRICS_GITHUB_HOST", "github.example.com/api/v3")
    monkeypatch.setenv("REPOMETRICS_RESCHEDULE_SECONDS", "600")

    config = SyncConfig.from_env()

    assert config.db_path == tmp_path / "m.db"
    assert config.base_url == "https://github.example.com/api/v3"
    assert config.reschedule_interval_seconds == 600
    assert config.poll_interval_seconds == 60
