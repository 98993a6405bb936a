"""Weighted composite score for pullback candidates."""

from __future__ import annotations

import logging

from screener.config import Config
from screener.core.models import IndicatorSnapshot, RiskDecision, ScoreResult

logger = logging.getLogger(__name__)

FACTOR_NAMES = ("pullback", "rsi", "sma_gap", "bollinger", "rebound", "volume")

# Factor name -> config key of its weight.
WEIGHT_KEYS = {
    "pullback": "score.weight_pullback",
    "rsi": "score.weight_rsi",
    "sma_gap": "score.weight_sma_gap",
    "bollinger": "score.weight_band",
    "rebound": "score.weight_rebound",
    "volume": "score.weight_volume",
}

_MIN_WEIGHT_SUM = 0.0001


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def score_pullback(drawdown_pct: float) -> float:
    return _clamp(((-drawdown_pct) - 5.0) / 30.0 * 100.0)


def score_rsi(rsi: float) -> float:
    return _clamp(100.0 - abs(rsi - 40.0) * 3.0)


def score_sma_gap(pct_from_sma20: float) -> float:
    return _clamp((-pct_from_sma20) / 10.0 * 100.0)


def score_band(close: float, lower: float, upper: float) -> float:
    width = upper - lower
    if width <= 0.0:
        return 50.0
    return _clamp((1.0 - (close - lower) / width) * 100.0)


def score_rebound(r3: float, r5: float, r10: float) -> float:
    return _clamp(50.0 + r3 * 7.0 + r5 * 3.5 - max(0.0, -r10))


def score_volume(volume_ratio: float) -> float:
    return _clamp(volume_ratio * 50.0)


class ScoringEngine:
    """Blend six clamped sub-scores by configured weight, then subtract the risk penalty."""

    def __init__(self, config: Config):
        self.config = config

    def weights(self) -> tuple[dict[str, float], bool]:
        """Normalized factor weights and whether the equal-weight fallback applied."""
        raw = {name: self.config.get_float(key) for name, key in WEIGHT_KEYS.items()}
        total = sum(raw.values())
        if total <= _MIN_WEIGHT_SUM:
            logger.warning(f"Score weights sum to {total:.4f}; falling back to equal weights")
            equal = 1.0 / len(raw)
            return {name: equal for name in raw}, True
        return {name: w / total for name, w in raw.items()}, False

    def score(self, snapshot: IndicatorSnapshot, risk: RiskDecision) -> ScoreResult:
        s = snapshot
        sub = {
            "pullback": score_pullback(s.drawdown120_pct),
            "rsi": score_rsi(s.rsi14),
            "sma_gap": score_sma_gap(s.pct_from_sma20),
            "bollinger": score_band(s.last_close, s.bollinger_lower, s.bollinger_upper),
            "rebound": score_rebound(s.return3d_pct, s.return5d_pct, s.return10d_pct),
            "volume": score_volume(s.volume_ratio20),
        }
        weights, fallback = self.weights()
        weighted = sum(sub[name] * weights[name] for name in FACTOR_NAMES)
        final = _clamp(weighted - risk.penalty)

        breakdown = dict(sub)
        breakdown["risk_penalty"] = -risk.penalty
        breakdown["final"] = final
        return ScoreResult(score=round(final, 2), breakdown=breakdown, weights_fallback=fallback)
