"""Tests for the trade plan builder."""

from __future__ import annotations

import json
import math

import pytest

from screener.config import Config
from screener.core.enums import CauseCode
from screener.indicators.engine import IndicatorEngine
from screener.plan.builder import PlanInput, TradePlanBuilder, parse_indicator_blob

OWNER = TradePlanBuilder.OWNER

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _input(**overrides) -> PlanInput:
    values = dict(
        last_close=115.0,
        sma20=112.8125,
        low_lookback=104.0,
        high_lookback=126.25,
        atr14=2.36,
        volatility20_pct=22.0,
        volume_ratio20=1.6,
    )
    values.update(overrides)
    return PlanInput(**values)


def _build(plan_input: PlanInput, **config):
    return TradePlanBuilder(Config(config)).build(plan_input)


# ---------------------------------------------------------------------------
# Validation chain
# ---------------------------------------------------------------------------


class TestBuild:
    def test_valid_plan(self):
        out = _build(_input())
        assert out.success
        plan = out.value
        assert plan.valid
        assert plan.stop_loss == 101.92
        assert plan.take_profit == 134.62
        assert plan.stop_loss < plan.entry_low <= plan.entry_high < plan.take_profit
        assert plan.rr_ratio >= 1.5
        assert out.owner == OWNER
        assert set(out.details) == {
            "rr_min",
            "entry_buffer_pct",
            "stop_buffer_pct",
            "stop_atr_mult",
            "target_high_lookback_mult",
            "max_deviation_pct",
            "max_volatility_pct",
            "min_volume_ratio",
        }

    def test_missing_last_close(self):
        out = _build(_input(last_close=math.nan))
        assert out.failed
        assert out.cause_code == CauseCode.PLAN_INVALID
        assert out.owner == OWNER
        assert out.details["reason"] == "missing_inputs"
        assert out.details["missing_inputs"] == ["last_close"]

    def test_missing_inputs_lists_every_absent_field(self):
        out = _build(PlanInput(last_close=100.0, sma20=0.0, high_lookback=-1.0))
        assert out.details["missing_inputs"] == ["sma20", "low_lookback", "high_lookback"]

    def test_atr_unavailable(self):
        out = _build(_input(atr14=0.0))
        assert out.details["reason"] == "atr_unavailable"
        assert out.details["atr14"] == 0.0

    def test_abnormal_volatility(self):
        out = _build(_input(volatility20_pct=95.0))
        assert out.details["reason"] == "abnormal_volatility_or_liquidity"
        assert out.details["volatility20_pct"] == 95.0
        assert out.details["max_volatility_pct"] == 80.0
        assert "volume_ratio20" not in out.details

    def test_abnormal_liquidity(self):
        out = _build(_input(volume_ratio20=0.1))
        assert out.details["reason"] == "abnormal_volatility_or_liquidity"
        assert out.details["volume_ratio20"] == 0.1
        assert out.details["min_volume_ratio"] == 0.3

    def test_missing_gate_values_are_not_gated(self):
        out = _build(_input(volatility20_pct=math.nan, volume_ratio20=math.nan))
        assert out.success

    def test_entry_deviation_too_large(self):
        out = _build(_input(last_close=125.0))
        assert out.details["reason"] == "entry_deviation_too_large"
        assert out.details["max_deviation_pct"] == 8.0
        assert out.details["deviation_pct"] > 8.0

    def test_invalid_stop_or_risk_distance(self):
        out = _build(_input(low_lookback=0.5, atr14=200.0, last_close=0.4, sma20=0.4), **{"stop.loss.bufferPct": "0.2"})
        assert out.details["reason"] == "invalid_stop_or_risk_distance"
        assert "stop_by_low" in out.details
        assert "stop_by_atr" in out.details

    def test_price_structure_invalid(self):
        # a 12% entry buffer puts entry_low under the stop
        out = _build(_input(), **{"plan.entry.buffer_pct": "12"})
        assert out.details["reason"] == "price_structure_invalid"
        assert out.details["entry_low"] <= out.details["stop_loss"]

    def test_target_rounded_up_keeps_rr(self):
        out = _build(_input(last_close=100.0, sma20=100.0, low_lookback=97.0, high_lookback=101.0, atr14=1.003))
        assert out.success
        assert out.value.rr_ratio >= 1.5

    def test_rr_floor_respected(self):
        out = _build(_input(), **{"rr.min": "0.5"})
        assert out.success
        assert out.details["rr_min"] == 1.1

    def test_stop_is_lower_of_low_and_atr_candidates(self):
        assert _build(_input(low_lookback=114.0, atr14=1.0)).value.stop_loss == 111.72
        assert _build(_input(low_lookback=114.0, atr14=3.0)).value.stop_loss == 110.5


# ---------------------------------------------------------------------------
# Watchlist adapter
# ---------------------------------------------------------------------------


class TestWatchlist:
    def test_parse_blob_malformed(self):
        assert parse_indicator_blob("{not json") == {}
        assert parse_indicator_blob("[1, 2]") == {}
        assert parse_indicator_blob(None) == {}
        assert parse_indicator_blob({"a": 1}) == {"a": 1}

    def test_from_blob_uses_aliases(self):
        plan_input = PlanInput.from_blob({"close": 50.0, "last_close": -1, "ma20": "49.5", "atr": 1.0})
        assert plan_input.last_close == 50.0
        assert plan_input.sma20 == 49.5
        assert plan_input.atr14 == 1.0
        assert math.isnan(plan_input.low_lookback)

    def test_build_for_watchlist_matches_primary_path(self):
        blob = json.dumps(
            {
                "last_close": 115.0,
                "ma20": 112.8125,
                "low20": 104.0,
                "high_lookback": 126.25,
                "atr14": 2.36,
                "volatility_pct": 22.0,
                "vol_ratio": 1.6,
            }
        )
        builder = TradePlanBuilder(Config())
        from_blob, direct = builder.build_for_watchlist(blob), builder.build(_input())
        assert from_blob.value == direct.value
        assert dict(from_blob.details) == dict(direct.details)

    def test_build_for_watchlist_malformed_blob(self):
        out = TradePlanBuilder(Config()).build_for_watchlist("oops")
        assert out.failed
        assert out.details["missing_inputs"] == ["last_close", "sma20", "low_lookback", "high_lookback"]

    def test_build_for_snapshot(self, pullback_bars):
        snap = IndicatorEngine().compute(pullback_bars)
        out = TradePlanBuilder(Config()).build_for_snapshot(snap)
        assert out.success
        assert out.value.stop_loss == 101.92
        assert out.value.take_profit == pytest.approx(134.62)
        assert out.value.rr_ratio >= 1.5
