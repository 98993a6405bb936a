"""Pullback candidate filter: hard exclusion rules plus a signal-count gate."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from screener.config import Config
from screener.core.models import Bar, FilterDecision, IndicatorSnapshot

logger = logging.getLogger(__name__)

HARD_RULE_NAMES = (
    "history_too_short",
    "price_out_of_range",
    "avg_volume_too_low",
    "drawdown_too_deep",
    "too_far_above_sma60",
    "short_term_drop_too_fast",
)

SIGNAL_RULE_NAMES = (
    "pullback_detected",
    "rsi_rebound_zone",
    "price_near_or_below_sma20",
    "near_lower_bollinger",
    "short_term_rebound",
    "volume_support",
)


class CandidateFilter:
    """Evaluate every hard rule and every signal; record each failure and each hit.

    ``passed`` requires all hard rules to hold and at least
    ``filter.min_signals`` signals to fire. ``reasons`` lists failed hard rules
    first, then fired signals, both in vocabulary order.
    """

    def __init__(self, config: Config):
        self.config = config

    def evaluate(self, bars: Sequence[Bar], snapshot: IndicatorSnapshot) -> FilterDecision:
        cfg = self.config
        min_history = max(120, cfg.get_int("scan.min_history_bars", 180))
        min_price = cfg.get_float("scan.min_price", 5.0)
        max_price = cfg.get_float("scan.max_price", 100000.0)
        min_avg_volume = cfg.get_float("scan.min_avg_volume", 50000.0)
        max_drawdown = cfg.get_float("filter.max_drawdown_pct", -45.0)
        max_pct_from_sma60 = cfg.get_float("filter.max_pct_from_sma60", 6.0)
        max_drop_3d = cfg.get_float("filter.hard.max_drop_3d_pct", -8.0)

        pullback_threshold = cfg.get_float("filter.pullback_threshold_pct", -8.0)
        rsi_floor = cfg.get_float("filter.rsi_floor", 20.0)
        rsi_ceiling = cfg.get_float("filter.rsi_ceiling", 55.0)
        max_pct_from_sma20 = cfg.get_float("filter.max_pct_from_sma20", 2.0)
        band_proximity = cfg.get_float("filter.band_proximity_pct", 3.0)
        volume_support_ratio = cfg.get_float("filter.volume_support_ratio", 1.0)
        min_signals = max(1, cfg.get_int("filter.min_signals", 3))

        s = snapshot
        hard = {
            "history_too_short": len(bars) < min_history,
            "price_out_of_range": s.last_close < min_price or s.last_close > max_price,
            "avg_volume_too_low": s.avg_volume20 < min_avg_volume,
            "drawdown_too_deep": s.drawdown120_pct < max_drawdown,
            "too_far_above_sma60": s.pct_from_sma60 > max_pct_from_sma60,
            "short_term_drop_too_fast": s.return3d_pct < max_drop_3d,
        }
        band_width = s.bollinger_upper - s.bollinger_lower
        signals = {
            "pullback_detected": s.drawdown120_pct <= pullback_threshold,
            "rsi_rebound_zone": rsi_floor <= s.rsi14 <= rsi_ceiling,
            "price_near_or_below_sma20": s.pct_from_sma20 <= max_pct_from_sma20,
            "near_lower_bollinger": band_width > 0
            and s.last_close <= s.bollinger_lower * (1.0 + band_proximity / 100.0),
            "short_term_rebound": s.return3d_pct > 0 or s.return5d_pct > 0,
            "volume_support": s.volume_ratio20 > volume_support_ratio,
        }

        failed_hard = [name for name in HARD_RULE_NAMES if hard[name]]
        fired = [name for name in SIGNAL_RULE_NAMES if signals[name]]
        passed = not failed_hard and len(fired) >= min_signals

        metrics = {
            "signal_count": float(len(fired)),
            "min_signal_required": float(min_signals),
            "drawdown120_pct": s.drawdown120_pct,
            "rsi14": s.rsi14,
            "pct_from_sma20": s.pct_from_sma20,
            "pct_from_sma60": s.pct_from_sma60,
            "return3d_pct": s.return3d_pct,
            "return5d_pct": s.return5d_pct,
            "volume_ratio20": s.volume_ratio20,
        }
        if failed_hard:
            logger.debug(f"Hard rules failed: {failed_hard}")
        return FilterDecision(passed=passed, reasons=tuple(failed_hard + fired), metrics=metrics)
