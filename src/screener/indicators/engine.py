"""Technical indicator snapshot over an ordered daily bar series.

Every windowed statistic degrades to a neutral default when the series is
shorter than its window, so later stages can gate on history length
explicitly instead of tripping over NaN.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict

from screener.core.models import Bar, IndicatorSnapshot

logger = logging.getLogger(__name__)

RSI_PERIOD = 14
ATR_PERIOD = 14
BOLLINGER_PERIOD = 20
BOLLINGER_K = 2.0
DRAWDOWN_LOOKBACK = 120
VOLATILITY_PERIOD = 20
TRADING_DAYS = 252.0

_COMPUTED_INDICATORS = (
    "sma20",
    "sma60",
    "sma60_prev5",
    "sma120",
    "rsi14",
    "atr14",
    "atr_pct",
    "bollinger_upper",
    "bollinger_middle",
    "bollinger_lower",
    "drawdown120_pct",
    "volatility20_pct",
    "avg_volume20",
    "volume_ratio20",
    "pct_from_sma20",
    "pct_from_sma60",
    "return3d_pct",
    "return5d_pct",
    "return10d_pct",
    "low_lookback",
    "high_lookback",
)

# Minimum bar count for each indicator to carry a real value.
_CORE_WINDOWS = {
    "last_close": 1,
    "sma20": 20,
    "sma60": 60,
    "rsi14": RSI_PERIOD + 1,
    "atr14": ATR_PERIOD + 1,
    "avg_volume20": 20,
}
_OPTIONAL_WINDOWS = {
    "sma120": 120,
    "volatility20_pct": VOLATILITY_PERIOD + 1,
    "low_lookback": 1,
    "high_lookback": 1,
}

# RSI, ATR and volatility can legitimately be 0; these cannot.
_PRICE_LIKE = {"last_close", "sma20", "sma60", "sma120", "avg_volume20", "low_lookback", "high_lookback"}

# Neutral value for every snapshot field that is not 0.0.
_NEUTRAL = {"rsi14": 50.0}


def computed_indicators() -> tuple[str, ...]:
    """Names of the indicators the engine derives from bars."""
    return _COMPUTED_INDICATORS


class IndicatorCoverage(BaseModel):
    """Which indicators a snapshot could not fill from the available history."""

    model_config = ConfigDict(frozen=True)

    missing_core: tuple[str, ...] = ()
    missing_optional: tuple[str, ...] = ()

    @property
    def core_ready(self) -> bool:
        return not self.missing_core

    @property
    def fully_ready(self) -> bool:
        return not self.missing_core and not self.missing_optional

    @property
    def all_missing(self) -> tuple[str, ...]:
        return self.missing_core + self.missing_optional


def indicator_coverage(snapshot: IndicatorSnapshot | None, bars_count: int) -> IndicatorCoverage:
    if snapshot is None:
        return IndicatorCoverage(
            missing_core=tuple(_CORE_WINDOWS), missing_optional=tuple(_OPTIONAL_WINDOWS)
        )

    def _missing(windows: dict[str, int]) -> tuple[str, ...]:
        out = []
        for name, window in windows.items():
            value = getattr(snapshot, name)
            if bars_count < window:
                out.append(name)
            elif name in _PRICE_LIKE and value <= 0:
                out.append(name)
        return tuple(out)

    return IndicatorCoverage(
        missing_core=_missing(_CORE_WINDOWS),
        missing_optional=_missing(_OPTIONAL_WINDOWS),
    )


def _sma(values: np.ndarray, period: int, offset: int = 0) -> float:
    """Mean of the ``period`` values ending ``offset`` bars before the last."""
    if period <= 0 or offset < 0 or len(values) < period + offset:
        return 0.0
    end = len(values) - offset
    return float(values[end - period : end].mean())


def _rsi(closes: np.ndarray, period: int = RSI_PERIOD) -> float:
    """Wilder RSI seeded from the first ``period`` deltas."""
    if len(closes) <= period:
        return 50.0
    deltas = np.diff(closes)
    gains = np.clip(deltas, 0.0, None)
    losses = np.clip(-deltas, 0.0, None)
    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
    if avg_loss == 0.0:
        return 100.0 if avg_gain > 0.0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _atr(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = ATR_PERIOD) -> float:
    """Simple mean of true range over the trailing ``period`` bars."""
    if len(closes) <= period:
        return 0.0
    prev_close = closes[-period - 1 : -1]
    high = highs[-period:]
    low = lows[-period:]
    true_range = np.maximum(high - low, np.maximum(np.abs(high - prev_close), np.abs(low - prev_close)))
    return float(true_range.mean())


def _bollinger(closes: np.ndarray, period: int, k: float) -> tuple[float, float, float]:
    if len(closes) < period:
        last = float(closes[-1])
        return last, last, last
    window = closes[-period:]
    mean = float(window.mean())
    std = float(window.std())  # population
    return mean + k * std, mean, mean - k * std


def _drawdown_pct(closes: np.ndarray, lookback: int) -> float:
    window = closes[-lookback:]
    peak = float(window.max())
    if peak <= 0:
        return 0.0
    return (float(closes[-1]) - peak) / peak * 100.0


def _volatility_pct(closes: np.ndarray, period: int) -> float:
    """Annualized population std of the last ``period`` log returns, in percent."""
    if len(closes) <= period:
        return 0.0
    window = closes[-period - 1 :]
    prev = window[:-1]
    nxt = window[1:]
    valid = (prev > 0) & (nxt > 0)
    returns = np.zeros(period)
    returns[valid] = np.log(nxt[valid] / prev[valid])
    return float(returns.std()) * math.sqrt(TRADING_DAYS) * 100.0


def _return_pct(closes: np.ndarray, days: int) -> float:
    if len(closes) <= days:
        return 0.0
    base = float(closes[-1 - days])
    if base == 0.0:
        return 0.0
    return (float(closes[-1]) - base) / base * 100.0


def _pct_from(value: float, base: float) -> float:
    if base <= 0:
        return 0.0
    return (value - base) / base * 100.0


class IndicatorEngine:
    """Turn ordered bars into an :class:`IndicatorSnapshot`."""

    def __init__(self, stop_loss_lookback_days: int = 20):
        self.stop_loss_lookback_days = max(5, stop_loss_lookback_days)

    def compute(self, bars: Sequence[Bar]) -> IndicatorSnapshot | None:
        """Compute the snapshot at the last bar; ``None`` only for empty input."""
        if not bars:
            return None

        closes = np.array([b.close for b in bars], dtype=float)
        highs = np.array([b.high for b in bars], dtype=float)
        lows = np.array([b.low for b in bars], dtype=float)
        volumes = np.array([b.volume for b in bars], dtype=float)

        last_close = float(closes[-1])
        sma20 = _sma(closes, 20)
        sma60 = _sma(closes, 60)
        sma60_prev5 = _sma(closes, 60, offset=5)
        atr14 = _atr(highs, lows, closes)
        upper, middle, lower = _bollinger(closes, BOLLINGER_PERIOD, BOLLINGER_K)
        avg_volume20 = _sma(volumes, 20)
        lookback = self.stop_loss_lookback_days

        values = {
            "last_close": last_close,
            "sma20": sma20,
            "sma60": sma60,
            "sma60_prev5": sma60_prev5,
            "sma60_slope": sma60 - sma60_prev5,
            "sma120": _sma(closes, 120),
            "rsi14": _rsi(closes),
            "atr14": atr14,
            "atr_pct": 0.0 if last_close == 0.0 else atr14 / last_close * 100.0,
            "bollinger_upper": upper,
            "bollinger_middle": middle,
            "bollinger_lower": lower,
            "drawdown120_pct": _drawdown_pct(closes, DRAWDOWN_LOOKBACK),
            "volatility20_pct": _volatility_pct(closes, VOLATILITY_PERIOD),
            "avg_volume20": avg_volume20,
            "volume_ratio20": 0.0 if avg_volume20 <= 0 else float(volumes[-1]) / avg_volume20,
            "pct_from_sma20": _pct_from(last_close, sma20),
            "pct_from_sma60": _pct_from(last_close, sma60),
            "return3d_pct": _return_pct(closes, 3),
            "return5d_pct": _return_pct(closes, 5),
            "return10d_pct": _return_pct(closes, 10),
            "low_lookback": float(lows[-lookback:].min()),
            "high_lookback": float(highs[-lookback:].max()),
        }

        for name, value in values.items():
            if not math.isfinite(value):
                logger.debug(f"{bars[-1].ticker}: non-finite {name}, using neutral default")
                values[name] = _NEUTRAL.get(name, 0.0)

        return IndicatorSnapshot(**values)
