"""Descriptive forward-return summary of past top candidates."""

from __future__ import annotations

import logging
from datetime import date, datetime

import numpy as np
from pydantic import BaseModel, Field

from screener.config import Config
from screener.storage.store import Store

logger = logging.getLogger(__name__)


class SampleReturn(BaseModel):
    run_id: int
    ticker: str
    entry_date: date
    exit_date: date
    entry_close: float
    exit_close: float
    return_pct: float


class BacktestReport(BaseModel):
    run_count: int = 0
    sample_count: int = 0
    avg_return_pct: float = 0.0
    median_return_pct: float = 0.0
    win_rate_pct: float = 0.0
    hold_days: int = 0
    top_k: int = 0
    samples: list[SampleReturn] = Field(default_factory=list)


def _run_date(run: dict) -> date | None:
    raw = run.get("started_at") or ""
    try:
        return datetime.fromisoformat(str(raw).replace(" ", "T")).date()
    except ValueError:
        logger.warning(f"Run {run.get('id')}: unparsable start time {raw!r}")
        return None


def to_summary_text(report: BacktestReport) -> str:
    if report.sample_count == 0:
        return f"Backtest: no samples over {report.run_count} run(s)"
    return (
        f"Backtest: {report.run_count} run(s), {report.sample_count} sample(s), "
        f"top {report.top_k} held {report.hold_days} bars: avg {report.avg_return_pct:+.2f}%, "
        f"median {report.median_return_pct:+.2f}%, win rate {report.win_rate_pct:.1f}%"
    )


class BacktestRunner:
    """Replays the top picks of recent completed runs against stored daily bars.

    A sample enters at the first close on or after the run date and exits
    ``hold_days`` bars later; picks without enough later bars are skipped.
    """

    def __init__(self, config: Config, store: Store):
        self.store = store
        self.lookback_runs = max(1, config.get_int("backtest.lookback_runs", 30))
        self.top_k = max(1, config.get_int("backtest.top_k", 5))
        self.hold_days = max(1, config.get_int("backtest.hold_days", 10))

    def run(self) -> BacktestReport:
        runs = self.store.list_runs(status="SUCCESS", limit=self.lookback_runs)
        samples: list[SampleReturn] = []
        for run in runs:
            run_date = _run_date(run)
            if run_date is None:
                continue
            for candidate in self.store.load_candidates(run["id"], limit=self.top_k):
                bars = self.store.load_bars(candidate.ticker, since=run_date)
                if len(bars) <= self.hold_days:
                    continue
                entry, exit_ = bars[0], bars[self.hold_days]
                if entry.close <= 0:
                    continue
                samples.append(
                    SampleReturn(
                        run_id=run["id"],
                        ticker=candidate.ticker,
                        entry_date=entry.trade_date,
                        exit_date=exit_.trade_date,
                        entry_close=entry.close,
                        exit_close=exit_.close,
                        return_pct=(exit_.close / entry.close - 1.0) * 100.0,
                    )
                )

        report = BacktestReport(run_count=len(runs), hold_days=self.hold_days, top_k=self.top_k, samples=samples)
        if samples:
            returns = np.array([s.return_pct for s in samples])
            report.avg_return_pct = round(float(returns.mean()), 4)
            report.median_return_pct = round(float(np.median(returns)), 4)
            report.win_rate_pct = round(float((returns > 0).mean() * 100.0), 2)
            report.sample_count = len(samples)
        logger.info(to_summary_text(report))
        return report
