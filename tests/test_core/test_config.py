"""Tests for screener.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from screener.config import DEFAULTS, Config, ScreenerSettings
from screener.core.errors import ConfigError


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.get_int("scan.threads") == 3
        assert config.get_float("scan.min_avg_volume") == 50000.0
        assert config.get_float("rr.min") == 1.5
        assert config.get_bool("plan.required") is False
        assert config.get_str("scan.batch.checkpoint_key") == "daily.scan.batch.checkpoint.v1"

    def test_explicit_value_wins(self):
        config = Config({"scan.min_score": "60"})
        assert config.get_float("scan.min_score") == 60.0
        assert config.source_of("scan.min_score") == "override"
        assert config.source_of("scan.top_n") == "default"

    def test_blank_value_reads_default(self):
        config = Config({"scan.top_n": "  "})
        assert config.get_int("scan.top_n") == 15

    def test_unparsable_values_fall_back(self, caplog):
        config = Config({"scan.threads": "many", "plan.required": "maybe", "rr.min": "x"})
        assert config.get_int("scan.threads") == 3
        assert config.get_int("scan.threads", 7) == 7
        assert config.get_bool("plan.required", True) is True
        assert config.get_float("rr.min") == 1.5
        assert "not an integer" in caplog.text

    def test_bool_spellings(self):
        for raw in ("true", "1", "YES", "on"):
            assert Config({"k": raw}).get_bool("k") is True
        for raw in ("false", "0", "no", "off"):
            assert Config({"k": raw}).get_bool("k", True) is False

    def test_unknown_key_uses_caller_default(self):
        config = Config()
        assert config.get_int("scan.fresh_days", 4) == 4
        assert config.get_str("nope", "fallback") == "fallback"
        assert config.raw("nope") == ""

    def test_nested_mapping_is_flattened(self):
        config = Config.from_mapping({"scan": {"top_n": 5, "batch": {"enabled": False}}, "tags": ["a", "b"]})
        assert config.get_int("scan.top_n") == 5
        assert config.get_bool("scan.batch.enabled") is False
        assert config.get_list("tags") == ["a", "b"]

    def test_get_list_accepts_semicolons(self):
        assert Config({"k": "a; b,,c"}).get_list("k") == ["a", "b", "c"]

    def test_with_overrides_returns_new_config(self):
        base = Config({"scan.top_n": "5"})
        changed = base.with_overrides({"scan.min_score": 70}, scan__threads=8)
        assert base.get_int("scan.threads") == 3
        assert changed.get_int("scan.threads") == 8
        assert changed.get_float("scan.min_score") == 70.0
        assert changed.get_int("scan.top_n") == 5

    def test_get_path_resolves_against_working_dir(self, tmp_path):
        config = Config({"report.dir": "out"}, working_dir=tmp_path)
        assert config.get_path("report.dir") == (tmp_path / "out").resolve()
        assert config.get_path("missing") == tmp_path

    def test_snapshot(self):
        snap = Config({"scan.top_n": "9"}).snapshot(["scan.top_n", "rr.min"])
        assert snap == {"scan.top_n": "9", "rr.min": "1.5"}

    def test_contains(self):
        config = Config({"custom.key": "1"})
        assert "custom.key" in config
        assert "scan.threads" in config
        assert "other" not in config

    def test_every_default_parses(self):
        config = Config()
        for key in DEFAULTS:
            assert config.raw(key) != ""


class TestConfigFile:
    def test_from_json_file(self, tmp_path):
        path = tmp_path / "screener.json"
        path.write_text(json.dumps({"scan": {"top_n": 3}, "rr.min": 2.0}))
        config = Config.from_json_file(path)
        assert config.get_int("scan.top_n") == 3
        assert config.get_float("rr.min") == 2.0
        assert config.working_dir == tmp_path

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            Config.from_json_file(tmp_path / "absent.json")

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            Config.from_json_file(path)


class TestScreenerSettings:
    def test_defaults(self):
        settings = ScreenerSettings(_env_file=None)
        assert settings.db_path == Path("data/screener.db")
        assert settings.config_file is None
        assert settings.log_level == "WARNING"

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SCREENER_DB_PATH", str(tmp_path / "s.db"))
        monkeypatch.setenv("SCREENER_HISTORY_RANGE", "1y")
        settings = ScreenerSettings(_env_file=None)
        assert settings.db_path == tmp_path / "s.db"
        assert settings.load_config().get_str("scan.history_range") == "1y"

    def test_load_config_reads_file(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text(json.dumps({"scan.min_score": 42}))
        settings = ScreenerSettings(_env_file=None, config_file=path)
        config = settings.load_config()
        assert config.get_float("scan.min_score") == 42.0
        assert config.get_str("scan.history_range") == "2y"
