"""Watchlist analysis results: one verdict per user-chosen ticker."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from screener.core.enums import CauseCode, WatchStatus
from screener.core.models import ScoredCandidate, UniverseRecord
from screener.core.outcome import Outcome

OWNER = "screener.engine.scanner.BatchScanner.analyze_ticker"

_OBSERVE_CAUSES = frozenset({CauseCode.FILTER_REJECTED, CauseCode.SCORE_BELOW_THRESHOLD})
_RISK_CAUSES = frozenset({CauseCode.RISK_REJECTED, CauseCode.PLAN_INVALID})


def sanitize_watchlist(items: Iterable[str | None]) -> list[str]:
    """Upper-case, strip and dedupe tickers, keeping first-seen order."""
    seen: set[str] = set()
    tickers = []
    for item in items:
        ticker = (item or "").strip().upper()
        if ticker and ticker not in seen:
            seen.add(ticker)
            tickers.append(ticker)
    return tickers


def resolve_watch_records(
    tickers: Sequence[str], universe: Iterable[UniverseRecord]
) -> list[UniverseRecord]:
    """Match each ticker to a universe record by ticker or code.

    Tickers missing from the universe get a bare record so they are still analyzed.
    """
    by_key: dict[str, UniverseRecord] = {}
    for record in universe:
        for key in (record.ticker, record.code):
            key = key.strip().upper()
            if key and key not in by_key:
                by_key[key] = record
    return [by_key.get(ticker, UniverseRecord(ticker=ticker)) for ticker in tickers]


def watch_status_for(outcome: Outcome[Any]) -> WatchStatus:
    if outcome.success:
        return WatchStatus.CANDIDATE
    if outcome.cause_code in _OBSERVE_CAUSES:
        return WatchStatus.OBSERVE
    if outcome.cause_code in _RISK_CAUSES:
        return WatchStatus.RISK
    return WatchStatus.ERROR


@dataclass(frozen=True)
class WatchlistItem:
    record: UniverseRecord
    outcome: Outcome[ScoredCandidate]
    data_source: str = ""
    bars_count: int = 0
    last_trade_date: date | None = None
    last_close: float | None = None
    score: float | None = None

    @property
    def ticker(self) -> str:
        return self.record.ticker

    @property
    def status(self) -> WatchStatus:
        return watch_status_for(self.outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker,
            "name": self.record.name,
            "market": self.record.market,
            "status": self.status.value,
            "score": self.score,
            "last_close": self.last_close,
            "last_trade_date": self.last_trade_date.isoformat() if self.last_trade_date else None,
            "bars_count": self.bars_count,
            "data_source": self.data_source,
            "reason": self.outcome.reason,
            "outcome": self.outcome.to_dict(),
        }


@dataclass
class WatchlistReport:
    items: list[WatchlistItem] = field(default_factory=list)

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in WatchStatus}
        for item in self.items:
            counts[item.status.value] += 1
        return counts

    def by_status(self, status: WatchStatus) -> list[WatchlistItem]:
        return [item for item in self.items if item.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.items),
            "status_counts": self.status_counts(),
            "items": [item.to_dict() for item in self.items],
        }
