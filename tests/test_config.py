"""
Tests for Config (YAML + environment variables).
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from smartcat.core.config import DEFAULT_DB_PATH, Config
from smartcat.core.exceptions import ConfigurationError


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "smartcat.yaml"
    path.write_text(
        "store:\n"
        "  db_path: /var/lib/smartcat/categories.db\n"
        "scheduler:\n"
        "  interval_seconds: 600\n"
        "  timezone: Asia/Riyadh\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """No ambient SMARTCAT_* variables or config files leak into tests."""
    for key in [
        "SMARTCAT_STORE_DB_PATH",
        "SMARTCAT_SCHEDULER_INTERVAL_SECONDS",
        "SMARTCAT_SCHEDULER_TIMEZONE",
        "SMARTCAT_SCHEDULER_SKIP_UNTIL_NEXT_CHECK",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_defaults(self):
        config = Config(env_file=Path("missing.env"))
        assert config.db_path == DEFAULT_DB_PATH
        assert config.tick_interval_seconds == 3600
        assert config.tick_timeout_seconds == 300
        assert config.skip_until_next_check is True
        assert config.timezone.key == "UTC"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Config(tmp_path / "nope.yaml")


class TestSources:
    """Lookup order: overrides > env > YAML > default."""

    def test_yaml(self, config_file):
        config = Config(config_file)
        assert config.db_path == Path("/var/lib/smartcat/categories.db")
        assert config.tick_interval_seconds == 600
        assert config.timezone.key == "Asia/Riyadh"

    def test_default_location_discovered(self, config_file):
        assert Config().tick_interval_seconds == 600

    def test_env_beats_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("SMARTCAT_SCHEDULER_INTERVAL_SECONDS", "120")
        monkeypatch.setenv("SMARTCAT_SCHEDULER_SKIP_UNTIL_NEXT_CHECK", "false")
        config = Config(config_file)
        assert config.tick_interval_seconds == 120
        assert config.skip_until_next_check is False

    def test_override_beats_env(self, config_file, monkeypatch):
        monkeypatch.setenv("SMARTCAT_SCHEDULER_INTERVAL_SECONDS", "120")
        config = Config(config_file, overrides={"scheduler.interval_seconds": 30})
        assert config.tick_interval_seconds == 30

        config.set("store.db_path", "other.db")
        assert config.db_path == Path("other.db")

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "test.env"
        env_file.write_text("SMARTCAT_SCHEDULER_TIMEOUT_SECONDS=45\n", encoding="utf-8")
        try:
            assert Config(env_file=env_file).tick_timeout_seconds == 45
        finally:
            os.environ.pop("SMARTCAT_SCHEDULER_TIMEOUT_SECONDS", None)


class TestValidation:
    def test_unknown_timezone(self):
        config = Config(overrides={"scheduler.timezone": "Mars/Olympus"})
        with pytest.raises(ConfigurationError):
            config.timezone

    @pytest.mark.parametrize("value", [0, -5, "often"])
    def test_bad_interval(self, value):
        config = Config(overrides={"scheduler.interval_seconds": value})
        with pytest.raises(ConfigurationError):
            config.tick_interval_seconds

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("scheduler: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Config(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Config(path)
