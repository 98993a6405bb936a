"""Tests for the screener CLI commands (via CliRunner)."""

from __future__ import annotations

import json
from datetime import date

import pytest
from typer.testing import CliRunner

from screener.cli.app import app
from screener.data.provider import FetchResult

runner = CliRunner()

_BLOB = {
    "last_close": 115.0,
    "sma20": 112.8125,
    "low_lookback": 104.0,
    "high_lookback": 126.25,
    "atr14": 2.36,
    "volatility20_pct": 22.0,
    "volume_ratio20": 1.6,
}


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SCREENER_DB_PATH", str(tmp_path / "data" / "screener.db"))
    monkeypatch.delenv("SCREENER_CONFIG_FILE", raising=False)


@pytest.fixture
def fake_yahoo(monkeypatch, make_pullback_bars):
    bars = {"AAA": tuple(make_pullback_bars("AAA", end=date.today()))}

    class FakeYahoo:
        def __init__(self, timeout_seconds: int = 20):
            self.timeout_seconds = timeout_seconds

        def fetch_daily_history(self, ticker, range="2y", interval="1d"):
            if ticker in bars:
                return FetchResult(bars=bars[ticker])
            return FetchResult(failure_category="no_data", error="no_data")

    monkeypatch.setattr("screener.data.yahoo.YahooDataProvider", FakeYahoo)
    return FakeYahoo


def _universe_file(tmp_path, items) -> str:
    path = tmp_path / "universe.json"
    path.write_text(json.dumps(items))
    return str(path)


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


class TestScanRun:
    def test_json_output(self, tmp_path, fake_yahoo):
        universe = _universe_file(tmp_path, ["aaa", {"ticker": "BBB", "name": "Bee"}])
        result = runner.invoke(app, ["scan", "run", "--universe-file", universe, "--output", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["run_id"] == 1
        assert data["partial_run"] is False
        assert data["universe_size"] == 2
        assert [c["ticker"] for c in data["top_candidates"]] == ["AAA"]
        assert data["summary"]["total"] == 2
        assert data["summary"]["failure_counts"]["http_404/no_data"] == 1

    def test_rich_output(self, tmp_path, fake_yahoo):
        universe = _universe_file(tmp_path, ["AAA"])
        result = runner.invoke(app, ["scan", "run", "--universe-file", universe])
        assert result.exit_code == 0, result.output
        assert "COMPLETE" in result.output
        assert "AAA" in result.output

    def test_empty_universe(self, fake_yahoo):
        result = runner.invoke(app, ["scan", "run", "--output", "json"])
        assert result.exit_code == 1

    def test_bad_universe_file(self, tmp_path, fake_yahoo):
        path = tmp_path / "universe.json"
        path.write_text('{"ticker": "AAA"}')
        result = runner.invoke(app, ["scan", "run", "--universe-file", str(path)])
        assert result.exit_code == 1


class TestScanSummaryAndStatus:
    def test_summary(self, tmp_path, fake_yahoo):
        universe = _universe_file(tmp_path, ["AAA", "BBB"])
        runner.invoke(app, ["scan", "run", "--universe-file", universe, "--output", "json"])
        result = runner.invoke(app, ["scan", "summary", "1", "--output", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["run"]["status"] == "SUCCESS"
        assert data["summary"]["total"] == 2
        assert data["summary"]["fetch_coverage_pct"] == 50.0
        assert data["data_sources"] == {"yahoo": 1, "cache": 0, "other": 1}

    def test_summary_unknown_run(self):
        result = runner.invoke(app, ["scan", "summary", "42"])
        assert result.exit_code == 1

    def test_status_without_checkpoint(self):
        result = runner.invoke(app, ["scan", "status", "--output", "json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"checkpoint": None}

    def test_status_after_partial_run(self, tmp_path, fake_yahoo):
        universe = _universe_file(
            tmp_path, [{"ticker": "AAA", "market": "NYSE"}, {"ticker": "BBB", "market": "NASDAQ"}]
        )
        result = runner.invoke(
            app, ["scan", "run", "--universe-file", universe, "--max-segments", "1", "--output", "json"]
        )
        assert json.loads(result.stdout)["partial_run"] is True

        result = runner.invoke(app, ["scan", "status", "--output", "json"])
        checkpoint = json.loads(result.stdout)["checkpoint"]
        assert checkpoint["next_segment_index"] == 1
        assert checkpoint["segment_count"] == 2
        assert checkpoint["run_id"] == 1

        result = runner.invoke(app, ["scan", "status"])
        assert "next segment 2/2" in result.output


class TestScanWatchlist:
    def test_json_output(self, fake_yahoo):
        result = runner.invoke(app, ["scan", "watchlist", "aaa", "BBB", "--output", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["total"] == 2
        assert [i["ticker"] for i in data["items"]] == ["AAA", "BBB"]
        assert [i["status"] for i in data["items"]] == ["CANDIDATE", "ERROR"]
        assert data["items"][1]["outcome"]["cause_code"] == "NO_BARS"

    def test_watchlist_file(self, tmp_path, fake_yahoo):
        path = tmp_path / "watchlist.json"
        path.write_text(json.dumps([{"ticker": "AAA"}]))
        result = runner.invoke(app, ["scan", "watchlist", "--watchlist-file", str(path), "--output", "json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["status_counts"]["CANDIDATE"] == 1

    def test_rich_output(self, fake_yahoo):
        result = runner.invoke(app, ["scan", "watchlist", "AAA"])
        assert result.exit_code == 0, result.output
        assert "Watchlist" in result.output
        assert "CANDIDATE" in result.output

    def test_empty_watchlist(self, fake_yahoo):
        result = runner.invoke(app, ["scan", "watchlist", "--output", "json"])
        assert result.exit_code == 1

    def test_does_not_start_a_run(self, fake_yahoo):
        runner.invoke(app, ["scan", "watchlist", "AAA", "--output", "json"])
        result = runner.invoke(app, ["scan", "summary", "1"])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# plan / backtest
# ---------------------------------------------------------------------------


class TestPlanWatchlist:
    def test_inline_blob(self):
        result = runner.invoke(app, ["plan", "watchlist", json.dumps(_BLOB), "--output", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["value"]["stop_loss"] == 101.92
        assert data["value"]["take_profit"] == 134.62

    def test_blob_file(self, tmp_path):
        path = tmp_path / "indicators.json"
        path.write_text(json.dumps(_BLOB))
        result = runner.invoke(app, ["plan", "watchlist", str(path)])
        assert result.exit_code == 0, result.output
        assert "Trade Plan" in result.output
        assert "101.92" in result.output

    def test_rejected_plan(self):
        result = runner.invoke(app, ["plan", "watchlist", "{}", "--output", "json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["success"] is False
        assert data["cause_code"] == "PLAN_INVALID"
        assert data["details"]["reason"] == "missing_inputs"


class TestBacktest:
    def test_empty_store(self):
        result = runner.invoke(app, ["backtest", "--output", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["run_count"] == 0
        assert data["samples"] == []

    def test_text_output(self):
        result = runner.invoke(app, ["backtest"])
        assert "no samples" in result.output
