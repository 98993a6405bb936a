"""Run-level explainability: feature status resolution, coverage metrics, gate traces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from screener.core.enums import CauseCode, FeatureStatus

if TYPE_CHECKING:
    from screener.engine.summary import ScanResultSummary

OWNER_FEATURE_RESOLVE = "screener.core.diagnostics.resolve_feature_status"


class FeatureResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature_key: str
    config_value: bool
    implementation_present: bool
    status: FeatureStatus
    cause_code: CauseCode = CauseCode.NONE
    owner: str = ""
    message: str = ""
    runtime_exception_class: str = ""

    @property
    def enabled(self) -> bool:
        return self.status == FeatureStatus.ENABLED


def resolve_feature_status(
    feature_key: str,
    config_value: bool,
    implementation_present: bool,
    runtime_error: BaseException | None = None,
    owner: str = OWNER_FEATURE_RESOLVE,
) -> FeatureResolution:
    """Resolve an optional feature to one of four terminal states.

    Checked in order: config flag, implementation presence, captured runtime
    error. Each call is independent.
    """
    if not config_value:
        return FeatureResolution(
            feature_key=feature_key,
            config_value=False,
            implementation_present=implementation_present,
            status=FeatureStatus.DISABLED_BY_CONFIG,
            cause_code=CauseCode.FEATURE_DISABLED_BY_CONFIG,
            owner=owner,
            message="disabled by config",
        )
    if not implementation_present:
        return FeatureResolution(
            feature_key=feature_key,
            config_value=True,
            implementation_present=False,
            status=FeatureStatus.DISABLED_NOT_IMPLEMENTED,
            cause_code=CauseCode.FEATURE_NOT_IMPLEMENTED,
            owner=owner,
            message="feature not implemented",
        )
    if runtime_error is not None:
        return FeatureResolution(
            feature_key=feature_key,
            config_value=True,
            implementation_present=True,
            status=FeatureStatus.DISABLED_RUNTIME_ERROR,
            cause_code=CauseCode.FEATURE_RUNTIME_ERROR,
            owner=owner,
            message=str(runtime_error) or "runtime error",
            runtime_exception_class=type(runtime_error).__name__,
        )
    return FeatureResolution(
        feature_key=feature_key,
        config_value=True,
        implementation_present=True,
        status=FeatureStatus.ENABLED,
        owner=owner,
        message="enabled",
    )


class CoverageMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    numerator: int
    denominator: int
    source: str = ""
    owner: str = ""

    @property
    def pct(self) -> float:
        if self.denominator <= 0:
            return 0.0
        return self.numerator * 100.0 / self.denominator


class GateTrace(BaseModel):
    model_config = ConfigDict(frozen=True)

    gate: str
    passed: bool
    fail_count: int = 0
    threshold: str = ""
    cause_code: CauseCode = CauseCode.NONE
    owner: str = ""
    details: str = ""


@dataclass
class Diagnostics:
    """Mutable collector owned by the coordinating thread of one run."""

    run_id: int
    run_mode: str = ""
    config_snapshot: dict[str, str] = field(default_factory=dict)
    coverages: dict[str, CoverageMetric] = field(default_factory=dict)
    feature_statuses: dict[str, FeatureResolution] = field(default_factory=dict)
    gates: list[GateTrace] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def add_config(self, key: str, value: Any) -> None:
        if not key or not key.strip():
            return
        self.config_snapshot[key] = "" if value is None else str(value)

    def add_coverage(
        self,
        key: str,
        numerator: int,
        denominator: int,
        source: str = "",
        owner: str = "",
    ) -> None:
        if not key or not key.strip():
            return
        self.coverages[key] = CoverageMetric(
            key=key,
            numerator=max(0, numerator),
            denominator=max(0, denominator),
            source=source,
            owner=owner,
        )

    def add_feature_status(self, resolution: FeatureResolution) -> None:
        self.feature_statuses[resolution.feature_key] = resolution

    def add_gate(
        self,
        gate: str,
        passed: bool,
        fail_count: int = 0,
        threshold: str = "",
        cause_code: CauseCode = CauseCode.NONE,
        owner: str = "",
        details: str = "",
    ) -> None:
        self.gates.append(
            GateTrace(
                gate=gate,
                passed=passed,
                fail_count=max(0, fail_count),
                threshold=threshold,
                cause_code=cause_code,
                owner=owner,
                details=details,
            )
        )

    def add_note(self, note: str) -> None:
        if note and note.strip():
            self.notes.append(note.strip())

    @classmethod
    def from_summary(
        cls, summary: ScanResultSummary, run_id: int = 0, run_mode: str = "", owner: str = ""
    ) -> Diagnostics:
        diagnostics = cls(run_id=run_id, run_mode=run_mode)
        diagnostics.record_scan_coverage(summary, owner)
        return diagnostics

    def record_scan_coverage(self, summary: ScanResultSummary, owner: str = "") -> None:
        """Record fetch, indicator and tradable-indicator coverage of a scan."""
        self.add_coverage("fetch_coverage", summary.fetch_coverage, summary.total, "scan_results", owner)
        self.add_coverage(
            "indicator_coverage", summary.indicator_coverage, summary.total, "scan_results", owner
        )
        self.add_coverage(
            "indicator_coverage_tradable",
            summary.tradable_indicator_coverage,
            summary.tradable_denominator,
            "scan_results",
            owner,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_mode": self.run_mode,
            "config_snapshot": dict(self.config_snapshot),
            "coverages": {
                key: {**metric.model_dump(mode="json"), "pct": round(metric.pct, 2)}
                for key, metric in self.coverages.items()
            },
            "feature_statuses": {
                key: res.model_dump(mode="json") for key, res in self.feature_statuses.items()
            },
            "gates": [gate.model_dump(mode="json") for gate in self.gates],
            "notes": list(self.notes),
        }
