"""Market data provider protocol and fetch-failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from screener.core.enums import ScanFailureReason
from screener.core.models import Bar

# Request failure categories reported by providers.
TIMEOUT = "timeout"
RATE_LIMIT = "rate_limit"
PARSE_ERROR = "parse_error"
NO_DATA = "no_data"
OTHER = "other"

_CATEGORY_REASONS = {
    TIMEOUT: ScanFailureReason.TIMEOUT,
    RATE_LIMIT: ScanFailureReason.RATE_LIMIT,
    PARSE_ERROR: ScanFailureReason.PARSE_ERROR,
    NO_DATA: ScanFailureReason.HTTP_404_NO_DATA,
}


@dataclass(frozen=True)
class FetchResult:
    """Bars for one ticker, or the category of the request failure."""

    bars: tuple[Bar, ...] = ()
    failure_category: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.bars)

    @property
    def request_failed(self) -> bool:
        return bool(self.failure_category)


class MarketDataProvider(Protocol):
    """Source of daily OHLCV history.

    Implementations report failures through :class:`FetchResult` instead of
    raising in the steady-state path.
    """

    def fetch_daily_history(self, ticker: str, range: str = "2y", interval: str = "1d") -> FetchResult:
        ...


def classify_fetch_error(error: BaseException) -> str:
    """Map an exception raised while fetching to a request failure category."""
    if isinstance(error, TimeoutError):
        return TIMEOUT
    text = f"{type(error).__name__} {error}".lower()
    if "timeout" in text or "timed out" in text:
        return TIMEOUT
    if "ratelimit" in text or "rate limit" in text or "too many requests" in text or "429" in text:
        return RATE_LIMIT
    if "404" in text or "not found" in text or "no data" in text or "delisted" in text:
        return NO_DATA
    if isinstance(error, (ValueError, KeyError)) or "json" in text or "parse" in text:
        return PARSE_ERROR
    return OTHER


def failure_reason_for(category: str | None) -> ScanFailureReason:
    """Scan failure reason for a request category; blank maps to NONE."""
    if category is None or not category.strip():
        return ScanFailureReason.NONE
    return _CATEGORY_REASONS.get(category.strip().lower(), ScanFailureReason.OTHER)
