"""Tests for feature status resolution and run diagnostics."""

from __future__ import annotations

from screener.core.diagnostics import Diagnostics, resolve_feature_status
from screener.core.enums import CauseCode, FeatureStatus, ScanFailureReason
from screener.core.models import UniverseRecord
from screener.engine.summary import ScanResultSummary, TickerScanResult


class TestResolveFeatureStatus:
    def test_enabled(self):
        res = resolve_feature_status("news", True, True)
        assert res.status == FeatureStatus.ENABLED
        assert res.enabled
        assert res.cause_code == CauseCode.NONE

    def test_config_checked_first(self):
        res = resolve_feature_status("news", False, False, RuntimeError("boom"))
        assert res.status == FeatureStatus.DISABLED_BY_CONFIG
        assert res.cause_code == CauseCode.FEATURE_DISABLED_BY_CONFIG
        assert not res.enabled

    def test_not_implemented(self):
        res = resolve_feature_status("news", True, False)
        assert res.status == FeatureStatus.DISABLED_NOT_IMPLEMENTED
        assert res.cause_code == CauseCode.FEATURE_NOT_IMPLEMENTED

    def test_runtime_error(self):
        res = resolve_feature_status("news", True, True, KeyError("missing"))
        assert res.status == FeatureStatus.DISABLED_RUNTIME_ERROR
        assert res.cause_code == CauseCode.FEATURE_RUNTIME_ERROR
        assert res.runtime_exception_class == "KeyError"


class TestDiagnostics:
    def test_from_summary_records_coverage(self):
        results = [
            TickerScanResult(record=UniverseRecord(ticker="A"), fetch_success=True, indicator_ready=True),
            TickerScanResult(
                record=UniverseRecord(ticker="B"),
                fetch_success=True,
                failure_reason=ScanFailureReason.STALE,
            ),
            TickerScanResult(record=UniverseRecord(ticker="C"), failure_reason=ScanFailureReason.TIMEOUT),
        ]
        summary = ScanResultSummary.from_results(results)
        diag = Diagnostics.from_summary(summary, run_id=7, run_mode="DAILY", owner="test")

        assert diag.run_id == 7
        assert diag.coverages["fetch_coverage"].numerator == 2
        assert diag.coverages["fetch_coverage"].denominator == 3
        assert diag.coverages["indicator_coverage"].numerator == 1
        tradable = diag.coverages["indicator_coverage_tradable"]
        assert (tradable.numerator, tradable.denominator) == (1, 2)
        assert tradable.pct == 50.0

    def test_add_helpers_ignore_blank_keys(self):
        diag = Diagnostics(run_id=1)
        diag.add_config("", "x")
        diag.add_coverage(" ", 1, 2)
        diag.add_note("   ")
        diag.add_config("scan.top_n", 15)
        diag.add_note(" partial run ")
        assert diag.config_snapshot == {"scan.top_n": "15"}
        assert diag.coverages == {}
        assert diag.notes == ["partial run"]

    def test_add_gate_and_feature(self):
        diag = Diagnostics(run_id=1)
        diag.add_gate("min_fetch", False, fail_count=-3, cause_code=CauseCode.GATE_MIN_FETCH_COVERAGE)
        diag.add_feature_status(resolve_feature_status("news", False, True))
        assert diag.gates[0].fail_count == 0
        assert diag.gates[0].cause_code == CauseCode.GATE_MIN_FETCH_COVERAGE
        assert diag.feature_statuses["news"].status == FeatureStatus.DISABLED_BY_CONFIG

    def test_coverage_pct_with_zero_denominator(self):
        diag = Diagnostics(run_id=1)
        diag.add_coverage("x", 3, 0)
        assert diag.coverages["x"].pct == 0.0

    def test_to_dict(self):
        diag = Diagnostics(run_id=4, run_mode="DAILY")
        diag.add_coverage("fetch_coverage", 1, 3)
        diag.add_gate("min_coverage", True, threshold="fetch>=0%")
        diag.add_feature_status(resolve_feature_status("plan.required", False, True))
        data = diag.to_dict()
        assert data["run_id"] == 4
        assert data["coverages"]["fetch_coverage"]["pct"] == 33.33
        assert data["gates"][0] == {
            "gate": "min_coverage",
            "passed": True,
            "fail_count": 0,
            "threshold": "fetch>=0%",
            "cause_code": "NONE",
            "owner": "",
            "details": "",
        }
        assert data["feature_statuses"]["plan.required"]["status"] == "DISABLED_BY_CONFIG"
