"""
tests/test_config.py — YAML Configuration Loading
==================================================
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from farmhub.config import FarmhubConfig, load_config

YAML = """\
community_name: Kiambu Pig Farmers
default_timezone: Africa/Nairobi
moderation:
  rate_limit_per_hour: 4
  content_cooldown_hours: 12
quiz:
  max_open_attempts: 2
leaderboard:
  snapshot_size: 25
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env():
    names = ("MODERATION_RATE_LIMIT_PER_HOUR", "MODERATION_REOPEN_COOLDOWN_HOURS", "SCORING_VERIFY_TOTALS")
    with patch.dict(os.environ):
        for name in names:
            os.environ.pop(name, None)
        yield


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_values_and_defaults(self, config_file):
        cfg = load_config(config_file)
        assert cfg.community_name == "Kiambu Pig Farmers"
        assert cfg.default_timezone == "Africa/Nairobi"
        assert cfg.report_rate_limit_per_hour == 4
        assert cfg.report_content_cooldown_hours == 12
        assert cfg.report_reopen_cooldown_hours == FarmhubConfig().report_reopen_cooldown_hours
        assert cfg.quiz_max_open_attempts == 2
        assert cfg.leaderboard_snapshot_size == 25
        assert cfg.scoring_verify_totals is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == FarmhubConfig()

    def test_environment_overrides(self, config_file):
        os.environ["MODERATION_RATE_LIMIT_PER_HOUR"] = "20"
        os.environ["MODERATION_REOPEN_COOLDOWN_HOURS"] = "6"
        os.environ["SCORING_VERIFY_TOTALS"] = "yes"

        cfg = load_config(config_file)
        assert cfg.report_rate_limit_per_hour == 20
        assert cfg.report_reopen_cooldown_hours == 6
        assert cfg.scoring_verify_totals is True

    def test_config_is_immutable(self, config_file):
        cfg = load_config(config_file)
        with pytest.raises(AttributeError):
            cfg.community_name = "Other"
