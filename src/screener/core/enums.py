"""Closed vocabularies shared by the decision pipeline and the scan layer."""

from __future__ import annotations

from enum import StrEnum


class CauseCode(StrEnum):
    """Machine-readable reason attached to every negative outcome."""

    NONE = "NONE"
    NO_BARS = "NO_BARS"
    HISTORY_SHORT = "HISTORY_SHORT"
    STALE = "STALE"
    FETCH_FAILED = "FETCH_FAILED"
    INDICATOR_ERROR = "INDICATOR_ERROR"
    PLAN_INVALID = "PLAN_INVALID"
    FEATURE_DISABLED_BY_CONFIG = "FEATURE_DISABLED_BY_CONFIG"
    FEATURE_NOT_IMPLEMENTED = "FEATURE_NOT_IMPLEMENTED"
    FEATURE_RUNTIME_ERROR = "FEATURE_RUNTIME_ERROR"
    TICKER_RESOLVE_FAILED = "TICKER_RESOLVE_FAILED"
    FILTER_REJECTED = "FILTER_REJECTED"
    RISK_REJECTED = "RISK_REJECTED"
    SCORE_BELOW_THRESHOLD = "SCORE_BELOW_THRESHOLD"
    GATE_SKIP_ON_PARTIAL = "GATE_SKIP_ON_PARTIAL"
    GATE_MIN_FETCH_COVERAGE = "GATE_MIN_FETCH_COVERAGE"
    GATE_MIN_INDICATOR_COVERAGE = "GATE_MIN_INDICATOR_COVERAGE"
    MISSING_INDICATORS = "MISSING_INDICATORS"
    DATA_GAP = "DATA_GAP"
    RUNTIME_ERROR = "RUNTIME_ERROR"


class ScanFailureReason(StrEnum):
    """Why a ticker did not reach the candidate stage (fetch and gating layer)."""

    NONE = "none"
    TIMEOUT = "timeout"
    HTTP_404_NO_DATA = "http_404/no_data"
    PARSE_ERROR = "parse_error"
    STALE = "stale"
    HISTORY_SHORT = "history_short"
    FILTERED_NON_TRADABLE = "filtered_non_tradable"
    RATE_LIMIT = "rate_limit"
    OTHER = "other"

    @classmethod
    def from_label(cls, raw: str | None) -> ScanFailureReason:
        if raw is None or not raw.strip():
            return cls.NONE
        target = raw.strip().lower()
        for reason in cls:
            if reason.value == target:
                return reason
        return cls.OTHER


class DataInsufficientReason(StrEnum):
    """Data-quality reason a ticker could not be evaluated."""

    NONE = "NONE"
    NO_DATA = "NO_DATA"
    STALE = "STALE"
    HISTORY_SHORT = "HISTORY_SHORT"

    @classmethod
    def from_text(cls, raw: str | None) -> DataInsufficientReason:
        if raw is None or not raw.strip():
            return cls.NONE
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return cls.NONE


class FeatureStatus(StrEnum):
    ENABLED = "ENABLED"
    DISABLED_BY_CONFIG = "DISABLED_BY_CONFIG"
    DISABLED_NOT_IMPLEMENTED = "DISABLED_NOT_IMPLEMENTED"
    DISABLED_RUNTIME_ERROR = "DISABLED_RUNTIME_ERROR"


class WatchStatus(StrEnum):
    """Verdict shown for one watchlist ticker."""

    CANDIDATE = "CANDIDATE"
    OBSERVE = "OBSERVE"
    RISK = "RISK"
    ERROR = "ERROR"
