"""Risk penalty model with fail-fast vetoes."""

from __future__ import annotations

import logging

from screener.config import Config
from screener.core.models import IndicatorSnapshot, RiskDecision

logger = logging.getLogger(__name__)

RISK_FLAG_NAMES = (
    "atr_too_high",
    "volatility_too_high",
    "drawdown_too_deep",
    "liquidity_weak",
)


class RiskFilter:
    """Four independent checks, each adding a capped penalty when tripped.

    ATR and volatility only veto once they exceed ``max * fail_multiplier``
    (strictly greater; the boundary itself passes). A deep drawdown or weak
    liquidity always vetoes.
    """

    def __init__(self, config: Config):
        self.config = config

    def evaluate(self, snapshot: IndicatorSnapshot) -> RiskDecision:
        cfg = self.config
        max_atr_pct = cfg.get_float("risk.max_atr_pct", 9.0)
        max_volatility_pct = cfg.get_float("risk.max_volatility_pct", 80.0)
        max_drawdown_abs = cfg.get_float("risk.max_drawdown_pct", 60.0)
        min_volume_ratio = cfg.get_float("risk.min_volume_ratio", 0.3)
        atr_fail_mult = max(1.0, cfg.get_float("risk.fail_atr_multiplier", 1.5))
        vol_fail_mult = max(1.0, cfg.get_float("risk.fail_volatility_multiplier", 1.4))
        atr_scale = max(0.0, cfg.get_float("risk.penalty.atr_scale", 1.7))
        atr_cap = max(0.0, cfg.get_float("risk.penalty.atr_cap", 18.0))
        vol_scale = max(0.0, cfg.get_float("risk.penalty.volatility_scale", 0.45))
        vol_cap = max(0.0, cfg.get_float("risk.penalty.volatility_cap", 18.0))
        dd_scale = max(0.0, cfg.get_float("risk.penalty.drawdown_scale", 1.1))
        dd_cap = max(0.0, cfg.get_float("risk.penalty.drawdown_cap", 22.0))
        liquidity_penalty = max(0.0, cfg.get_float("risk.penalty.liquidity", 12.0))

        s = snapshot
        flags: list[str] = []
        reasons: list[str] = []
        penalty = 0.0
        passed = True

        if s.atr_pct > max_atr_pct:
            flags.append("atr_too_high")
            penalty += min(atr_cap, (s.atr_pct - max_atr_pct) * atr_scale)
            fail_at = max_atr_pct * atr_fail_mult
            if s.atr_pct > fail_at:
                passed = False
            reasons.append(f"ATR {s.atr_pct:.2f}% above {max_atr_pct:.2f}% (veto above {fail_at:.2f}%)")

        if s.volatility20_pct > max_volatility_pct:
            flags.append("volatility_too_high")
            penalty += min(vol_cap, (s.volatility20_pct - max_volatility_pct) * vol_scale)
            fail_at = max_volatility_pct * vol_fail_mult
            if s.volatility20_pct > fail_at:
                passed = False
            reasons.append(
                f"Volatility {s.volatility20_pct:.2f}% above {max_volatility_pct:.2f}% "
                f"(veto above {fail_at:.2f}%)"
            )

        drawdown_abs = abs(s.drawdown120_pct)
        if drawdown_abs > max_drawdown_abs:
            flags.append("drawdown_too_deep")
            penalty += min(dd_cap, (drawdown_abs - max_drawdown_abs) * dd_scale)
            passed = False
            reasons.append(f"Drawdown {drawdown_abs:.2f}% deeper than {max_drawdown_abs:.2f}%")

        if s.volume_ratio20 < min_volume_ratio:
            flags.append("liquidity_weak")
            penalty += liquidity_penalty
            passed = False
            reasons.append(f"Volume ratio {s.volume_ratio20:.2f} below {min_volume_ratio:.2f}")

        return RiskDecision(passed=passed, penalty=penalty, flags=tuple(flags), reasons=tuple(reasons))
