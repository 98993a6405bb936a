"""Pydantic value types for the screening pipeline."""

from __future__ import annotations

import math
from datetime import date

from pydantic import BaseModel, ConfigDict, Field

_FROZEN = ConfigDict(frozen=True)


class Bar(BaseModel):
    """One day's OHLCV record for a ticker."""

    model_config = _FROZEN

    ticker: str
    trade_date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class UniverseRecord(BaseModel):
    model_config = _FROZEN

    ticker: str
    code: str = ""
    name: str = ""
    market: str = ""


class IndicatorSnapshot(BaseModel):
    """Fixed-shape set of indicators for one ticker at its last bar.

    Every field is a finite float; statistics without enough history hold
    their neutral default (0.0, RSI 50.0).
    """

    model_config = _FROZEN

    last_close: float
    sma20: float = 0.0
    sma60: float = 0.0
    sma60_prev5: float = 0.0
    sma60_slope: float = 0.0
    sma120: float = 0.0
    rsi14: float = 50.0
    atr14: float = 0.0
    atr_pct: float = 0.0
    bollinger_upper: float = 0.0
    bollinger_middle: float = 0.0
    bollinger_lower: float = 0.0
    drawdown120_pct: float = 0.0
    volatility20_pct: float = 0.0
    avg_volume20: float = 0.0
    volume_ratio20: float = 0.0
    pct_from_sma20: float = 0.0
    pct_from_sma60: float = 0.0
    return3d_pct: float = 0.0
    return5d_pct: float = 0.0
    return10d_pct: float = 0.0
    low_lookback: float = 0.0
    high_lookback: float = 0.0


class FilterDecision(BaseModel):
    model_config = _FROZEN

    passed: bool
    reasons: tuple[str, ...] = ()
    metrics: dict[str, float] = Field(default_factory=dict)

    @property
    def signal_count(self) -> int:
        return int(self.metrics.get("signal_count", 0))


class RiskDecision(BaseModel):
    model_config = _FROZEN

    passed: bool
    penalty: float = Field(default=0.0, ge=0)
    flags: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()


class ScoreResult(BaseModel):
    model_config = _FROZEN

    score: float = Field(ge=0, le=100)
    breakdown: dict[str, float] = Field(default_factory=dict)
    weights_fallback: bool = False


class TradePlan(BaseModel):
    """Entry band, stop and target for one ticker; meaningful only when valid."""

    model_config = _FROZEN

    valid: bool
    entry_low: float = math.nan
    entry_high: float = math.nan
    stop_loss: float = math.nan
    take_profit: float = math.nan
    rr_ratio: float = math.nan

    @classmethod
    def invalid(cls) -> TradePlan:
        return cls(valid=False)


class ScoredCandidate(BaseModel):
    """Ticker that passed filter, risk and score gates, with its serialized reasons."""

    model_config = _FROZEN

    ticker: str
    code: str = ""
    name: str = ""
    market: str = ""
    score: float
    close: float
    reasons_json: str = "{}"
    indicators_json: str = "{}"
