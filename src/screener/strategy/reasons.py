"""JSON payloads persisted alongside each candidate row."""

from __future__ import annotations

import json

from screener.core.models import FilterDecision, IndicatorSnapshot, RiskDecision, ScoreResult, TradePlan
from screener.core.outcome import Outcome


def build_reasons_json(
    filter_decision: FilterDecision,
    risk: RiskDecision,
    score: ScoreResult,
    min_score: float,
    plan: Outcome[TradePlan] | None = None,
) -> str:
    """Explain the filter, risk and score decisions for one ticker."""
    score_passed = score.score >= min_score
    score_reasons = [f"score={score.score:.2f}", f"min_score={min_score:.2f}"]
    if score.weights_fallback:
        score_reasons.append("weights_fallback")
    if not score_passed:
        score_reasons.append("below_min_score")
    payload = {
        "filter_passed": filter_decision.passed,
        "risk_passed": risk.passed,
        "score_passed": score_passed,
        "filter_reasons": list(filter_decision.reasons),
        "risk_flags": list(risk.flags),
        "risk_reasons": list(risk.reasons),
        "score_reasons": score_reasons,
        "filter_metrics": {k: round(v, 4) for k, v in filter_decision.metrics.items()},
        "score_breakdown": {k: round(v, 4) for k, v in score.breakdown.items()},
    }
    if plan is not None:
        plan_payload = plan.value.model_dump() if plan.success else {"valid": False}
        plan_payload["reason"] = plan.reason
        payload["plan"] = plan_payload
    return json.dumps(payload)


def build_indicators_json(snapshot: IndicatorSnapshot) -> str:
    payload = {name: round(value, 4) for name, value in snapshot.model_dump().items()}
    payload["volatility20_ratio"] = round(snapshot.volatility20_pct / 100.0, 4)
    return json.dumps(payload)
