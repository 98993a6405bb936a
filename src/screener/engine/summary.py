"""Per-ticker scan rows and the run-level coverage summary built from them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from screener.core.enums import CauseCode, DataInsufficientReason, ScanFailureReason
from screener.core.models import ScoredCandidate, UniverseRecord
from screener.core.outcome import Outcome

logger = logging.getLogger(__name__)

OWNER_GATE = "screener.engine.summary.gate_min_coverage"

# Rows with these reasons never had a chance to produce indicators.
EXCLUDED_FROM_TRADABLE = (
    ScanFailureReason.FILTERED_NON_TRADABLE,
    ScanFailureReason.HISTORY_SHORT,
    ScanFailureReason.STALE,
    ScanFailureReason.HTTP_404_NO_DATA,
)


def _pct(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return numerator * 100.0 / denominator


class TickerScanResult(BaseModel):
    """Outcome of scanning one universe ticker; at most one primary failure reason."""

    model_config = ConfigDict(frozen=True)

    record: UniverseRecord
    fetch_success: bool = False
    indicator_ready: bool = False
    bars_count: int = 0
    last_trade_date: date | None = None
    last_close: float | None = None
    data_source: str = ""
    failure_reason: ScanFailureReason = ScanFailureReason.NONE
    insufficient_reason: DataInsufficientReason = DataInsufficientReason.NONE
    request_failure_reason: ScanFailureReason = ScanFailureReason.NONE
    cause_code: CauseCode = CauseCode.NONE
    error: str = ""
    candidate: ScoredCandidate | None = None
    fetch_latency_ms: int = 0

    @property
    def ticker(self) -> str:
        return self.record.ticker

    @property
    def reason_text(self) -> str:
        if self.candidate is not None:
            return "candidate"
        parts = []
        if self.failure_reason != ScanFailureReason.NONE:
            parts.append(self.failure_reason.value)
        if self.cause_code != CauseCode.NONE:
            parts.append(self.cause_code.value)
        text = " / ".join(parts) or "ok"
        return f"{text}: {self.error}" if self.error else text


class ScanResultSummary(BaseModel):
    """Immutable run-level coverage. Count maps are complete over their enum."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    fetch_coverage: int = Field(default=0, ge=0)
    indicator_coverage: int = Field(default=0, ge=0)
    tradable_denominator: int = Field(default=0, ge=0)
    tradable_indicator_coverage: int = Field(default=0, ge=0)
    excluded_from_tradable: dict[str, int] = Field(default_factory=dict)
    failure_counts: dict[ScanFailureReason, int] = Field(default_factory=dict)
    request_failure_counts: dict[ScanFailureReason, int] = Field(default_factory=dict)
    insufficient_counts: dict[DataInsufficientReason, int] = Field(default_factory=dict)

    @field_validator("total", "fetch_coverage", "indicator_coverage", "tradable_denominator",
                     "tradable_indicator_coverage", mode="before")
    @classmethod
    def _floor_zero(cls, v: int) -> int:
        return max(0, int(v or 0))

    @field_validator("failure_counts", "request_failure_counts", mode="before")
    @classmethod
    def _complete_failure_counts(cls, v: dict | None) -> dict[ScanFailureReason, int]:
        out = {reason: 0 for reason in ScanFailureReason}
        for key, n in (v or {}).items():
            out[ScanFailureReason(key)] = max(0, int(n or 0))
        return out

    @field_validator("insufficient_counts", mode="before")
    @classmethod
    def _complete_insufficient_counts(cls, v: dict | None) -> dict[DataInsufficientReason, int]:
        out = {reason: 0 for reason in DataInsufficientReason}
        for key, n in (v or {}).items():
            out[DataInsufficientReason(key)] = max(0, int(n or 0))
        return out

    @field_validator("excluded_from_tradable", mode="before")
    @classmethod
    def _complete_excluded(cls, v: dict | None) -> dict[str, int]:
        out = {reason.value: 0 for reason in EXCLUDED_FROM_TRADABLE}
        for key, n in (v or {}).items():
            out[str(key)] = max(0, int(n or 0))
        return out

    @property
    def fetch_coverage_pct(self) -> float:
        return _pct(self.fetch_coverage, self.total)

    @property
    def indicator_coverage_pct(self) -> float:
        return _pct(self.indicator_coverage, self.total)

    @property
    def indicator_coverage_tradable_pct(self) -> float:
        return _pct(self.tradable_indicator_coverage, self.tradable_denominator)

    def failure_count(self, reason: ScanFailureReason) -> int:
        return self.failure_counts.get(reason, 0)

    def request_failure_count(self, reason: ScanFailureReason) -> int:
        return self.request_failure_counts.get(reason, 0)

    def insufficient_count(self, reason: DataInsufficientReason) -> int:
        return self.insufficient_counts.get(reason, 0)

    @classmethod
    def from_results(cls, results: Iterable[TickerScanResult]) -> ScanResultSummary:
        stats = ScanStats()
        for result in results:
            stats.add(result)
        return stats.to_summary()

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "fetch_coverage": self.fetch_coverage,
            "fetch_coverage_pct": round(self.fetch_coverage_pct, 2),
            "indicator_coverage": self.indicator_coverage,
            "indicator_coverage_pct": round(self.indicator_coverage_pct, 2),
            "tradable_denominator": self.tradable_denominator,
            "tradable_indicator_coverage": self.tradable_indicator_coverage,
            "indicator_coverage_tradable_pct": round(self.indicator_coverage_tradable_pct, 2),
            "excluded_from_tradable": dict(self.excluded_from_tradable),
            "failure_counts": {k.value: v for k, v in self.failure_counts.items()},
            "request_failure_counts": {k.value: v for k, v in self.request_failure_counts.items()},
            "insufficient_counts": {k.value: v for k, v in self.insufficient_counts.items()},
        }


@dataclass
class ScanStats:
    """Mutable accumulator; only the coordinating thread calls :meth:`add`."""

    total: int = 0
    fetch_coverage: int = 0
    indicator_coverage: int = 0
    tradable_denominator: int = 0
    tradable_indicator_coverage: int = 0
    candidates: int = 0
    failed: int = 0
    excluded: dict[str, int] = field(default_factory=dict)
    failure_counts: dict[ScanFailureReason, int] = field(default_factory=dict)
    request_failure_counts: dict[ScanFailureReason, int] = field(default_factory=dict)
    insufficient_counts: dict[DataInsufficientReason, int] = field(default_factory=dict)

    def add(self, result: TickerScanResult) -> None:
        self.total += 1
        if result.fetch_success:
            self.fetch_coverage += 1
        if result.indicator_ready:
            self.indicator_coverage += 1
        if result.candidate is not None:
            self.candidates += 1
        if result.failure_reason != ScanFailureReason.NONE:
            self.failed += 1

        reason = result.failure_reason
        self.failure_counts[reason] = self.failure_counts.get(reason, 0) + 1
        if result.request_failure_reason != ScanFailureReason.NONE:
            key = result.request_failure_reason
            self.request_failure_counts[key] = self.request_failure_counts.get(key, 0) + 1
        insufficient = result.insufficient_reason
        self.insufficient_counts[insufficient] = self.insufficient_counts.get(insufficient, 0) + 1

        if reason in EXCLUDED_FROM_TRADABLE:
            self.excluded[reason.value] = self.excluded.get(reason.value, 0) + 1
        else:
            self.tradable_denominator += 1
            if result.indicator_ready:
                self.tradable_indicator_coverage += 1

    def to_summary(self) -> ScanResultSummary:
        return ScanResultSummary(
            total=self.total,
            fetch_coverage=self.fetch_coverage,
            indicator_coverage=self.indicator_coverage,
            tradable_denominator=self.tradable_denominator,
            tradable_indicator_coverage=self.tradable_indicator_coverage,
            excluded_from_tradable=self.excluded,
            failure_counts=self.failure_counts,
            request_failure_counts=self.request_failure_counts,
            insufficient_counts=self.insufficient_counts,
        )


def gate_min_coverage(
    summary: ScanResultSummary,
    min_fetch_pct: float,
    min_indicator_pct: float,
) -> Outcome[ScanResultSummary]:
    """Check a run's coverage against caller-chosen floors.

    The indicator floor applies to the tradable-denominator percentage.
    """
    if summary.fetch_coverage_pct < min_fetch_pct:
        return Outcome.fail(
            CauseCode.GATE_MIN_FETCH_COVERAGE,
            OWNER_GATE,
            {
                "reason": "fetch_coverage_below_min",
                "fetch_coverage_pct": round(summary.fetch_coverage_pct, 2),
                "min_fetch_pct": min_fetch_pct,
            },
        )
    if summary.indicator_coverage_tradable_pct < min_indicator_pct:
        return Outcome.fail(
            CauseCode.GATE_MIN_INDICATOR_COVERAGE,
            OWNER_GATE,
            {
                "reason": "indicator_coverage_below_min",
                "indicator_coverage_tradable_pct": round(summary.indicator_coverage_tradable_pct, 2),
                "min_indicator_pct": min_indicator_pct,
            },
        )
    return Outcome.ok(summary, OWNER_GATE)
