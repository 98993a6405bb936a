"""Per-ticker decision pipeline: indicators -> filter -> risk -> score -> plan."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from screener.config import Config
from screener.core.enums import CauseCode
from screener.core.models import (
    Bar,
    FilterDecision,
    IndicatorSnapshot,
    RiskDecision,
    ScoreResult,
    ScoredCandidate,
    TradePlan,
    UniverseRecord,
)
from screener.core.outcome import Outcome
from screener.indicators.engine import IndicatorCoverage, IndicatorEngine, indicator_coverage
from screener.plan.builder import PlanInput, TradePlanBuilder
from screener.strategy.candidate_filter import CandidateFilter
from screener.strategy.reasons import build_indicators_json, build_reasons_json
from screener.strategy.risk_filter import RiskFilter
from screener.strategy.scoring import ScoringEngine

logger = logging.getLogger(__name__)

OWNER = "screener.engine.pipeline.DecisionPipeline.evaluate"


@dataclass(frozen=True)
class TickerEvaluation:
    """Everything the pipeline derived for one ticker, up to the stage it reached."""

    outcome: Outcome[ScoredCandidate]
    snapshot: IndicatorSnapshot | None = None
    coverage: IndicatorCoverage | None = None
    filter: FilterDecision | None = None
    risk: RiskDecision | None = None
    score: ScoreResult | None = None
    plan: Outcome[TradePlan] | None = None

    @property
    def indicator_ready(self) -> bool:
        return self.coverage is not None and self.coverage.core_ready


class DecisionPipeline:
    """Stateless composition of the decision stages; performs no I/O.

    One instance is shared by every worker thread of a scan.
    """

    def __init__(self, config: Config):
        self.config = config
        self.indicators = IndicatorEngine(config.get_int("stop.loss.lookbackDays", 20))
        self.candidate_filter = CandidateFilter(config)
        self.risk_filter = RiskFilter(config)
        self.scoring = ScoringEngine(config)
        self.plan_builder = TradePlanBuilder(config)
        self.min_score = config.get_float("scan.min_score", 55.0)
        self.plan_required = config.get_bool("plan.required", False)

    def evaluate(self, bars: Sequence[Bar], record: UniverseRecord | None = None) -> TickerEvaluation:
        ticker = record.ticker if record else (bars[-1].ticker if bars else "")
        snapshot = self.indicators.compute(bars)
        if snapshot is None:
            return TickerEvaluation(
                outcome=Outcome.fail(CauseCode.NO_BARS, OWNER, {"reason": "no_bars", "ticker": ticker})
            )
        coverage = indicator_coverage(snapshot, len(bars))

        decision = self.candidate_filter.evaluate(bars, snapshot)
        if not decision.passed:
            return TickerEvaluation(
                outcome=Outcome.fail(
                    CauseCode.FILTER_REJECTED,
                    OWNER,
                    {
                        "reason": ",".join(decision.reasons) or "no_signals",
                        "signal_count": decision.signal_count,
                        "min_signal_required": int(decision.metrics.get("min_signal_required", 0)),
                    },
                ),
                snapshot=snapshot,
                coverage=coverage,
                filter=decision,
            )

        risk = self.risk_filter.evaluate(snapshot)
        if not risk.passed:
            return TickerEvaluation(
                outcome=Outcome.fail(
                    CauseCode.RISK_REJECTED,
                    OWNER,
                    {"reason": ",".join(risk.flags), "penalty": round(risk.penalty, 4)},
                ),
                snapshot=snapshot,
                coverage=coverage,
                filter=decision,
                risk=risk,
            )

        score = self.scoring.score(snapshot, risk)
        if score.score < self.min_score:
            return TickerEvaluation(
                outcome=Outcome.fail(
                    CauseCode.SCORE_BELOW_THRESHOLD,
                    OWNER,
                    {"reason": "below_min_score", "score": score.score, "min_score": self.min_score},
                ),
                snapshot=snapshot,
                coverage=coverage,
                filter=decision,
                risk=risk,
                score=score,
            )

        plan = self.plan_builder.build(PlanInput.from_snapshot(snapshot))
        if plan.failed:
            logger.debug(f"{ticker}: plan not built ({plan.reason})")
            if self.plan_required:
                return TickerEvaluation(
                    outcome=plan.map(lambda _: None),
                    snapshot=snapshot,
                    coverage=coverage,
                    filter=decision,
                    risk=risk,
                    score=score,
                    plan=plan,
                )

        candidate = ScoredCandidate(
            ticker=ticker,
            code=record.code if record else "",
            name=record.name if record else "",
            market=record.market if record else "",
            score=score.score,
            close=snapshot.last_close,
            reasons_json=build_reasons_json(decision, risk, score, self.min_score, plan),
            indicators_json=build_indicators_json(snapshot),
        )
        details = {"score": score.score, "plan_valid": plan.success}
        if plan.failed:
            details["plan_reason"] = plan.reason
        return TickerEvaluation(
            outcome=Outcome.ok(candidate, OWNER, details),
            snapshot=snapshot,
            coverage=coverage,
            filter=decision,
            risk=risk,
            score=score,
            plan=plan,
        )
