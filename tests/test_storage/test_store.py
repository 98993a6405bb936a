"""Tests for the SQLite store."""

from __future__ import annotations

from datetime import date

import pytest

from screener.core.enums import CauseCode, DataInsufficientReason, ScanFailureReason
from screener.core.models import ScoredCandidate, UniverseRecord
from screener.engine.summary import ScanResultSummary, TickerScanResult
from screener.storage.store import Store


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "data" / "screener.db")
    yield s
    s.close()


def _results() -> list[TickerScanResult]:
    def row(ticker, **kwargs):
        return TickerScanResult(record=UniverseRecord(ticker=ticker, market="NYSE"), **kwargs)

    return [
        row(
            "AAA",
            fetch_success=True,
            indicator_ready=True,
            data_source="yahoo",
            last_trade_date=date(2026, 10, 16),
            last_close=120.0,
            bars_count=300,
            candidate=ScoredCandidate(ticker="AAA", score=70.0, close=120.0),
        ),
        row("BBB", fetch_success=True, indicator_ready=True, data_source="cache",
            cause_code=CauseCode.RISK_REJECTED),
        row("CCC", fetch_success=True, data_source="cache", failure_reason=ScanFailureReason.HISTORY_SHORT,
            insufficient_reason=DataInsufficientReason.HISTORY_SHORT,
            request_failure_reason=ScanFailureReason.PARSE_ERROR),
        row("DDD", failure_reason=ScanFailureReason.RATE_LIMIT, insufficient_reason=DataInsufficientReason.NO_DATA,
            request_failure_reason=ScanFailureReason.RATE_LIMIT),
        row("EEE", failure_reason=ScanFailureReason.HTTP_404_NO_DATA,
            insufficient_reason=DataInsufficientReason.NO_DATA,
            request_failure_reason=ScanFailureReason.HTTP_404_NO_DATA),
    ]


class TestUniverse:
    def test_replace_and_list(self, store):
        store.replace_universe([UniverseRecord(ticker="B"), UniverseRecord(ticker="A", market="NYSE")])
        assert [r.ticker for r in store.list_universe()] == ["B", "A"]

        assert store.replace_universe([UniverseRecord(ticker="C"), UniverseRecord(ticker="A")]) == 2
        listed = store.list_universe()
        assert [r.ticker for r in listed] == ["C", "A"]
        assert listed[1].market == ""
        assert len(store.list_universe(limit=1)) == 1


class TestRuns:
    def test_lifecycle(self, store):
        run_id = store.start_run()
        run = store.get_run(run_id)
        assert run["status"] == "RUNNING"
        assert run["mode"] == "DAILY"
        assert run["started_at"]

        store.finish_run(run_id, "SUCCESS", universe_size=5, scanned=5, candidate_count=1, top_n=15,
                         message="segments 1/1")
        run = store.get_run(run_id)
        assert run["status"] == "SUCCESS"
        assert run["scanned"] == 5
        assert run["finished_at"]

    def test_list_runs(self, store):
        first = store.start_run()
        second = store.start_run()
        store.finish_run(first, "SUCCESS")
        store.finish_run(second, "PARTIAL")
        assert [r["id"] for r in store.list_runs()] == [second, first]
        assert [r["id"] for r in store.list_runs(status="SUCCESS")] == [first]
        assert store.get_run(999) is None


class TestScanResults:
    def test_summary_matches_in_memory_aggregation(self, store):
        run_id = store.start_run()
        assert store.upsert_scan_results(run_id, _results()) == 5
        assert store.load_scan_summary(run_id) == ScanResultSummary.from_results(_results())

    def test_upsert_replaces_row(self, store):
        run_id = store.start_run()
        store.upsert_scan_results(run_id, _results())
        retry = TickerScanResult(record=UniverseRecord(ticker="DDD"), fetch_success=True, indicator_ready=True)
        store.upsert_scan_results(run_id, [retry])
        summary = store.load_scan_summary(run_id)
        assert summary.total == 5
        assert summary.failure_count(ScanFailureReason.RATE_LIMIT) == 0
        assert summary.request_failure_count(ScanFailureReason.RATE_LIMIT) == 0

    def test_runs_are_isolated(self, store):
        run_id = store.start_run()
        other = store.start_run()
        store.upsert_scan_results(run_id, _results())
        assert store.load_scan_summary(other).total == 0
        assert store.upsert_scan_results(other, []) == 0

    def test_data_source_counts(self, store):
        run_id = store.start_run()
        store.upsert_scan_results(run_id, _results())
        assert store.data_source_counts(run_id) == {"yahoo": 1, "cache": 2, "other": 2}


class TestBars:
    def test_upsert_and_load(self, store, make_bars):
        bars = make_bars([100.0 + k for k in range(10)], ticker="AAA")
        assert store.upsert_bars(bars) == 10
        store.upsert_bars(bars[-2:])
        loaded = store.load_bars("AAA")
        assert loaded == bars
        assert store.load_bars("ZZZ") == []

    def test_limit_returns_most_recent_ascending(self, store, make_bars):
        bars = make_bars([100.0 + k for k in range(10)], ticker="AAA")
        store.upsert_bars(bars)
        assert store.load_bars("AAA", limit=3) == bars[-3:]

    def test_since(self, store, make_bars):
        bars = make_bars([100.0 + k for k in range(10)], ticker="AAA")
        store.upsert_bars(bars)
        assert store.load_bars("AAA", since=bars[6].trade_date) == bars[6:]


class TestCandidates:
    def test_save_replaces_and_ranks(self, store):
        run_id = store.start_run()
        store.save_candidates(run_id, [ScoredCandidate(ticker="OLD", score=90.0, close=1.0)])
        ranked = [
            ScoredCandidate(ticker="AAA", score=80.0, close=120.0, reasons_json='{"a": 1}'),
            ScoredCandidate(ticker="BBB", score=60.0, close=130.0),
        ]
        assert store.save_candidates(run_id, ranked) == 2
        assert store.load_candidates(run_id) == ranked
        assert store.load_candidates(run_id, limit=1) == ranked[:1]


class TestMetadata:
    def test_put_get_delete(self, store):
        assert store.get_metadata("k") is None
        store.put_metadata("k", "v1")
        store.put_metadata("k", "v2")
        assert store.get_metadata("k") == "v2"
        store.delete_metadata("k")
        assert store.get_metadata("k") is None

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "screener.db"
        first = Store(path)
        first.put_metadata("checkpoint", "{}")
        first.close()
        second = Store(path)
        assert second.get_metadata("checkpoint") == "{}"
        second.close()
