"""Trade plan derivation: entry band, stop, target and reward/risk.

``TradePlanBuilder.build`` is a sequential validation chain. Each stage either
derives the values the next stage needs or stops with ``PLAN_INVALID`` and a
details mapping naming the stage (``details["reason"]``) and the values that
tripped it.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from screener.config import Config
from screener.core.enums import CauseCode
from screener.core.models import IndicatorSnapshot, TradePlan
from screener.core.outcome import Outcome

logger = logging.getLogger(__name__)

_RR_EPSILON = 1e-9

# Watchlist blob field -> alternate key used by older payloads.
BLOB_ALIASES = {
    "last_close": "close",
    "sma20": "ma20",
    "low_lookback": "low20",
    "high_lookback": "high20",
    "atr14": "atr",
    "volatility20_pct": "volatility_pct",
    "volume_ratio20": "vol_ratio",
}


def _finite_positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0.0


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _round2(value: float) -> float:
    return round(value, 2) if math.isfinite(value) else value


def _ceil2(value: float) -> float:
    # round first so 134.62 stored as 134.62000000000001 does not become 134.63
    return math.ceil(round(value * 100.0, 6)) / 100.0


def _clamp(value: float, low: float, high: float) -> float:
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


class PlanInput(BaseModel):
    """Indicator values the builder needs; absent values are NaN."""

    model_config = ConfigDict(frozen=True)

    last_close: float = math.nan
    sma20: float = math.nan
    low_lookback: float = math.nan
    high_lookback: float = math.nan
    atr14: float = math.nan
    volatility20_pct: float = math.nan
    volume_ratio20: float = math.nan

    @classmethod
    def from_snapshot(cls, snapshot: IndicatorSnapshot) -> PlanInput:
        return cls(
            last_close=snapshot.last_close,
            sma20=snapshot.sma20,
            low_lookback=snapshot.low_lookback,
            high_lookback=snapshot.high_lookback,
            atr14=snapshot.atr14,
            volatility20_pct=snapshot.volatility20_pct,
            volume_ratio20=snapshot.volume_ratio20,
        )

    @classmethod
    def from_blob(cls, blob: Mapping[str, Any]) -> PlanInput:
        """Resolve each field as the first finite positive of its key and alias."""
        values = {}
        for field_name, alias in BLOB_ALIASES.items():
            primary = _to_float(blob.get(field_name))
            fallback = _to_float(blob.get(alias))
            if _finite_positive(primary):
                values[field_name] = primary
            elif _finite_positive(fallback):
                values[field_name] = fallback
            else:
                values[field_name] = math.nan
        return cls(**values)


def parse_indicator_blob(raw: str | bytes | Mapping[str, Any] | None) -> dict[str, Any]:
    """Decode a persisted indicators JSON; malformed input yields an empty mapping."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed indicator blob: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Indicator blob is not an object: {type(data).__name__}")
        return {}
    return data


class TradePlanBuilder:
    OWNER = "screener.plan.builder.TradePlanBuilder.build"

    def __init__(self, config: Config):
        self.config = config

    def _fail(self, details: dict[str, Any]) -> Outcome[TradePlan]:
        logger.debug(f"Plan rejected: {details}")
        return Outcome.fail(CauseCode.PLAN_INVALID, self.OWNER, details)

    def build(self, plan_input: PlanInput) -> Outcome[TradePlan]:
        cfg = self.config
        p = plan_input

        # 1. required inputs
        missing = [
            name
            for name in ("last_close", "sma20", "low_lookback", "high_lookback")
            if not _finite_positive(getattr(p, name))
        ]
        if missing:
            return self._fail({"reason": "missing_inputs", "missing_inputs": missing})

        # 2. ATR
        if not _finite_positive(p.atr14):
            return self._fail({"reason": "atr_unavailable", "atr14": p.atr14})

        # 3. abnormal volatility / liquidity
        max_volatility = cfg.get_float("plan.gate.max_volatility_pct", 80.0)
        min_volume_ratio = cfg.get_float("plan.gate.min_volume_ratio", 0.3)
        gate: dict[str, Any] = {}
        if math.isfinite(p.volatility20_pct) and p.volatility20_pct > max_volatility:
            gate["volatility20_pct"] = p.volatility20_pct
            gate["max_volatility_pct"] = max_volatility
        if math.isfinite(p.volume_ratio20) and p.volume_ratio20 < min_volume_ratio:
            gate["volume_ratio20"] = p.volume_ratio20
            gate["min_volume_ratio"] = min_volume_ratio
        if gate:
            return self._fail({"reason": "abnormal_volatility_or_liquidity", **gate})

        # 4. entry deviation from SMA20
        close = p.last_close
        max_deviation = cfg.get_float("plan.entry.max_deviation_pct", 8.0)
        deviation = abs(close - p.sma20) / p.sma20 * 100.0
        if deviation > max_deviation:
            return self._fail(
                {
                    "reason": "entry_deviation_too_large",
                    "deviation_pct": round(deviation, 4),
                    "max_deviation_pct": max_deviation,
                }
            )

        rr_floor = max(1.0, cfg.get_float("plan.rr.min_floor", 1.1))
        rr_min = max(rr_floor, cfg.get_float("rr.min", 1.5))
        entry_buffer_pct = max(0.0, cfg.get_float("plan.entry.buffer_pct", 0.5))
        stop_buffer = _clamp(cfg.get_float("stop.loss.bufferPct", 0.02), 0.0, 0.2)
        atr_mult = max(0.1, cfg.get_float("plan.stop.atr_mult", 1.5))
        high_mult = _clamp(cfg.get_float("plan.target.high_lookback_mult", 0.98), 0.5, 1.5)

        # 5. stop loss
        candidates = [p.low_lookback * (1.0 - stop_buffer), close - atr_mult * p.atr14]
        usable = [c for c in candidates if _finite_positive(c)]
        stop_loss = _round2(min(usable)) if usable else math.nan
        risk = close - stop_loss
        if not math.isfinite(stop_loss) or not math.isfinite(risk) or risk <= 0.0:
            return self._fail(
                {
                    "reason": "invalid_stop_or_risk_distance",
                    "entry_mid": _round2(close),
                    "stop_loss": stop_loss,
                    "stop_by_low": candidates[0],
                    "stop_by_atr": candidates[1],
                    "rr_min": rr_min,
                }
            )

        # 6. target
        take_profit = _ceil2(max(p.sma20, p.high_lookback * high_mult, close + rr_min * risk))

        # 7. price structure
        entry_low = _round2(close * (1.0 - entry_buffer_pct / 100.0))
        entry_high = _round2(close * (1.0 + entry_buffer_pct / 100.0))
        if not (stop_loss < entry_low <= entry_high < take_profit):
            return self._fail(
                {
                    "reason": "price_structure_invalid",
                    "entry_low": entry_low,
                    "entry_high": entry_high,
                    "stop_loss": stop_loss,
                    "take_profit": take_profit,
                }
            )

        # 8. reward / risk
        rr = (take_profit - close) / (close - stop_loss)
        if not math.isfinite(rr) or rr + _RR_EPSILON < rr_min:
            return self._fail({"reason": "rr_below_threshold", "rr": _round2(rr), "rr_min": rr_min})

        plan = TradePlan(
            valid=True,
            entry_low=entry_low,
            entry_high=entry_high,
            stop_loss=stop_loss,
            take_profit=take_profit,
            # rounding must not drop the reported ratio under the floor it passed
            rr_ratio=max(_round2(rr), rr_min),
        )
        return Outcome.ok(
            plan,
            self.OWNER,
            {
                "rr_min": rr_min,
                "entry_buffer_pct": entry_buffer_pct,
                "stop_buffer_pct": stop_buffer * 100.0,
                "stop_atr_mult": atr_mult,
                "target_high_lookback_mult": high_mult,
                "max_deviation_pct": max_deviation,
                "max_volatility_pct": max_volatility,
                "min_volume_ratio": min_volume_ratio,
            },
        )

    def build_for_snapshot(self, snapshot: IndicatorSnapshot) -> Outcome[TradePlan]:
        return self.build(PlanInput.from_snapshot(snapshot))

    def build_for_watchlist(self, indicators_json: str | bytes | Mapping[str, Any] | None) -> Outcome[TradePlan]:
        """Build from a persisted indicators blob through the same validation chain."""
        return self.build(PlanInput.from_blob(parse_indicator_blob(indicators_json)))
