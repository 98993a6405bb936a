"""Segmented, resumable batch scan: fetch, data-quality gates, decision pipeline."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date

from screener.config import Config
from screener.core.diagnostics import Diagnostics, resolve_feature_status
from screener.core.enums import CauseCode, DataInsufficientReason, ScanFailureReason
from screener.core.models import Bar, ScoredCandidate, UniverseRecord
from screener.core.outcome import Outcome
from screener.data.provider import MarketDataProvider, classify_fetch_error, failure_reason_for
from screener.engine.batch import BatchCheckpoint, BatchPlan, Segment, prepare_universe
from screener.engine.pipeline import DecisionPipeline
from screener.engine.summary import (
    OWNER_GATE,
    ScanResultSummary,
    ScanStats,
    TickerScanResult,
    gate_min_coverage,
)
from screener.engine.watchlist import OWNER as WATCH_OWNER
from screener.engine.watchlist import (
    WatchlistItem,
    WatchlistReport,
    resolve_watch_records,
    sanitize_watchlist,
)
from screener.storage.store import Store

logger = logging.getLogger(__name__)

OWNER = "screener.engine.scanner.BatchScanner.run"

SOURCE_CACHE = "cache"
SOURCE_YAHOO = "yahoo"

# Enough daily bars for every indicator window plus the longest history gate.
_CACHE_BAR_LIMIT = 600


def is_fresh(last_trade_date: date | None, fresh_days: int, today: date | None = None) -> bool:
    """Whether the last bar is at most ``fresh_days`` calendar days old.

    Saturdays and Sundays allow at least two days so Friday's close stays fresh.
    """
    if last_trade_date is None:
        return False
    today = today or date.today()
    allowed = max(0, fresh_days)
    if today.weekday() >= 5:
        allowed = max(allowed, 2)
    return (today - last_trade_date).days <= allowed


def is_tradable_and_liquid(bars: Sequence[Bar], config: Config) -> tuple[bool, str]:
    """Liquidity gate applied before the decision pipeline.

    Returns:
        ``(ok, reason)``; ``reason`` names the first check that failed.
    """
    if not bars:
        return False, "no_bars"
    last_close = bars[-1].close
    min_price = config.get_float("scan.tradable.min_price", 5.0)
    if not math.isfinite(last_close) or last_close <= 0 or last_close < min_price:
        return False, f"last_close {last_close:.2f} below {min_price:.2f}"

    window = bars[-20:]
    avg_volume = sum(b.volume for b in window) / len(window)
    min_avg_volume = config.get_float("scan.tradable.min_avg_volume_20", 50000.0)
    if avg_volume < min_avg_volume:
        return False, f"avg_volume_20 {avg_volume:.0f} below {min_avg_volume:.0f}"

    zero_days = sum(1 for b in window if b.volume <= 0)
    max_zero = config.get_int("scan.tradable.max_zero_volume_days_20", 3)
    if zero_days > max_zero:
        return False, f"zero_volume_days {zero_days} above {max_zero}"

    lookback = max(1, config.get_int("scan.tradable.flat_lookback_days", 5))
    flat_days = sum(1 for b in bars[-lookback:] if b.open == b.close and b.high == b.low)
    max_flat = config.get_int("scan.tradable.max_flat_days", 3)
    if flat_days > max_flat:
        return False, f"flat_days {flat_days} above {max_flat}"
    return True, ""


def rank_candidates(candidates: Iterable[ScoredCandidate], top_n: int) -> list[ScoredCandidate]:
    """Highest score first, ticker as tie-break, one row per ticker."""
    best: dict[str, ScoredCandidate] = {}
    for candidate in candidates:
        current = best.get(candidate.ticker)
        if current is None or candidate.score > current.score:
            best[candidate.ticker] = candidate
    ranked = sorted(best.values(), key=lambda c: (-c.score, c.ticker))
    return ranked[: max(1, top_n)]


@dataclass
class BatchRunOutcome:
    run_id: int
    universe_size: int
    total_segments: int
    processed_segments: int
    next_segment_index: int
    partial_run: bool
    top_candidates: list[ScoredCandidate] = field(default_factory=list)
    summary: ScanResultSummary = field(default_factory=ScanResultSummary)
    resumed: bool = False
    diagnostics: Diagnostics | None = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "universe_size": self.universe_size,
            "total_segments": self.total_segments,
            "processed_segments": self.processed_segments,
            "next_segment_index": self.next_segment_index,
            "partial_run": self.partial_run,
            "resumed": self.resumed,
            "top_candidates": [c.model_dump() for c in self.top_candidates],
            "summary": self.summary.to_dict(),
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
        }


class BatchScanner:
    """Scans a universe segment by segment with a worker pool per segment.

    Workers run :meth:`scan_ticker` and never touch the run accumulator; the
    calling thread folds results, persists them and advances the checkpoint.
    """

    def __init__(
        self,
        config: Config,
        store: Store,
        provider: MarketDataProvider,
        pipeline: DecisionPipeline | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.pipeline = pipeline or DecisionPipeline(config)
        self._today = today or date.today

        self.min_history = max(120, config.get_int("scan.min_history_bars", 180))
        self.fresh_days = config.get_int("scan.fresh_days", config.get_int("scan.cache.fresh_days", 2))
        self.prefer_cache = config.get_bool("scan.cache.prefer_enabled", True)
        self.history_range = config.get_str("scan.history_range", "2y")
        self.history_interval = config.get_str("scan.history_interval", "1d")

    # ── Per-ticker ───────────────────────────────────────────────────────

    def load_bars(self, ticker: str) -> tuple[list[Bar], str, ScanFailureReason, str, int]:
        """Bars for ``ticker`` plus (source, request failure, error, latency ms)."""
        cached = self.store.load_bars(ticker, limit=_CACHE_BAR_LIMIT) if self.prefer_cache else []
        if (
            len(cached) >= self.min_history
            and is_fresh(cached[-1].trade_date, self.fresh_days, self._today())
        ):
            logger.debug(f"{ticker}: using {len(cached)} cached bars")
            return cached, SOURCE_CACHE, ScanFailureReason.NONE, "", 0

        started = time.monotonic()
        try:
            fetched = self.provider.fetch_daily_history(ticker, self.history_range, self.history_interval)
            category, error, bars = fetched.failure_category, fetched.error, list(fetched.bars)
        except Exception as e:
            category, error, bars = classify_fetch_error(e), str(e), []
            logger.warning(f"{ticker}: provider raised ({category}): {e}")
        latency_ms = int((time.monotonic() - started) * 1000)
        request_failure = failure_reason_for(category)

        if bars:
            self.store.upsert_bars(bars)
            return bars, SOURCE_YAHOO, request_failure, error, latency_ms
        if not cached and not self.prefer_cache:
            cached = self.store.load_bars(ticker, limit=_CACHE_BAR_LIMIT)
        if cached:
            logger.debug(f"{ticker}: fetch returned nothing, falling back to {len(cached)} cached bars")
            return cached, SOURCE_CACHE, request_failure, error, latency_ms
        return [], "", request_failure, error, latency_ms

    def scan_ticker(self, record: UniverseRecord) -> TickerScanResult:
        """Fetch and evaluate one ticker; the first failing data-quality check wins."""
        ticker = record.ticker
        bars, source, request_failure, error, latency_ms = self.load_bars(ticker)

        if not bars:
            reason = request_failure if request_failure != ScanFailureReason.NONE else ScanFailureReason.HTTP_404_NO_DATA
            return TickerScanResult(
                record=record,
                fetch_success=False,
                failure_reason=reason,
                insufficient_reason=DataInsufficientReason.NO_DATA,
                request_failure_reason=request_failure,
                cause_code=CauseCode.NO_BARS if reason == ScanFailureReason.HTTP_404_NO_DATA else CauseCode.FETCH_FAILED,
                error=error or "no_data",
                fetch_latency_ms=latency_ms,
            )

        base = dict(
            record=record,
            fetch_success=True,
            bars_count=len(bars),
            last_trade_date=bars[-1].trade_date,
            last_close=bars[-1].close,
            data_source=source,
            request_failure_reason=request_failure,
            fetch_latency_ms=latency_ms,
        )

        if not is_fresh(bars[-1].trade_date, self.fresh_days, self._today()):
            return TickerScanResult(
                **base,
                failure_reason=ScanFailureReason.STALE,
                insufficient_reason=DataInsufficientReason.STALE,
                cause_code=CauseCode.STALE,
                error=f"last bar {bars[-1].trade_date.isoformat()}",
            )
        if len(bars) < self.min_history:
            return TickerScanResult(
                **base,
                failure_reason=ScanFailureReason.HISTORY_SHORT,
                insufficient_reason=DataInsufficientReason.HISTORY_SHORT,
                cause_code=CauseCode.HISTORY_SHORT,
                error=f"{len(bars)} bars < {self.min_history}",
            )
        tradable, why = is_tradable_and_liquid(bars, self.config)
        if not tradable:
            return TickerScanResult(
                **base,
                failure_reason=ScanFailureReason.FILTERED_NON_TRADABLE,
                cause_code=CauseCode.FILTER_REJECTED,
                error=why,
            )

        try:
            evaluation = self.pipeline.evaluate(bars, record)
        except Exception as e:
            logger.exception(f"{ticker}: decision pipeline failed")
            return TickerScanResult(
                **base,
                failure_reason=ScanFailureReason.OTHER,
                cause_code=CauseCode.RUNTIME_ERROR,
                error=f"{type(e).__name__}: {e}",
            )

        outcome = evaluation.outcome
        return TickerScanResult(
            **base,
            indicator_ready=evaluation.indicator_ready,
            cause_code=outcome.cause_code,
            error="" if outcome.success else outcome.reason,
            candidate=outcome.value if outcome.success else None,
        )

    def _runtime_error_result(self, record: UniverseRecord, error: BaseException) -> TickerScanResult:
        return TickerScanResult(
            record=record,
            failure_reason=ScanFailureReason.OTHER,
            cause_code=CauseCode.RUNTIME_ERROR,
            error=f"{type(error).__name__}: {error}",
        )

    def _scan_segment(self, segment: Segment, workers: int) -> Iterator[TickerScanResult]:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.scan_ticker, record): record for record in segment.records}
            for future in as_completed(futures):
                record = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"{record.ticker}: scan worker failed: {e}")
                    result = self._runtime_error_result(record, e)
                yield result

    # ── Watchlist ────────────────────────────────────────────────────────

    def analyze_ticker(self, record: UniverseRecord) -> WatchlistItem:
        """Evaluate one watchlist ticker without the tradability gate."""
        ticker = record.ticker
        bars, source, request_failure, error, _ = self.load_bars(ticker)
        if not bars:
            cause = CauseCode.FETCH_FAILED
            if request_failure in (ScanFailureReason.NONE, ScanFailureReason.HTTP_404_NO_DATA):
                cause = CauseCode.NO_BARS
            reason = request_failure.value if request_failure != ScanFailureReason.NONE else "no_data"
            return WatchlistItem(
                record=record,
                outcome=Outcome.fail(
                    cause, WATCH_OWNER, {"reason": f"fetch_failed:{reason}", "error": error or "no_data"}
                ),
            )

        base = dict(
            record=record,
            data_source=source,
            bars_count=len(bars),
            last_trade_date=bars[-1].trade_date,
            last_close=bars[-1].close,
        )
        if not is_fresh(bars[-1].trade_date, self.fresh_days, self._today()):
            return WatchlistItem(
                **base,
                outcome=Outcome.fail(
                    CauseCode.STALE,
                    WATCH_OWNER,
                    {"reason": "stale", "last_trade_date": bars[-1].trade_date.isoformat()},
                ),
            )
        if len(bars) < self.min_history:
            return WatchlistItem(
                **base,
                outcome=Outcome.fail(
                    CauseCode.HISTORY_SHORT,
                    WATCH_OWNER,
                    {"reason": "history_short", "bars": len(bars), "min_history": self.min_history},
                ),
            )

        try:
            evaluation = self.pipeline.evaluate(bars, record)
        except Exception as e:
            logger.exception(f"{ticker}: watchlist evaluation failed")
            return WatchlistItem(
                **base,
                outcome=Outcome.fail(
                    CauseCode.RUNTIME_ERROR, WATCH_OWNER, {"reason": f"{type(e).__name__}: {e}"}
                ),
            )
        return WatchlistItem(
            **base,
            outcome=evaluation.outcome,
            score=evaluation.score.score if evaluation.score is not None else None,
        )

    def analyze_watchlist(
        self,
        tickers: Iterable[str],
        workers: int | None = None,
        on_progress: Callable[[str, int], None] | None = None,
    ) -> WatchlistReport:
        """Analyze each watchlist ticker; items keep the watchlist order.

        Nothing is written except fetched bars, which refresh the bar cache.
        """
        symbols = sanitize_watchlist(tickers)
        records = resolve_watch_records(symbols, self.store.list_universe())
        workers = max(1, workers if workers is not None else self.config.get_int("scan.threads", 3))
        logger.info(f"Watchlist: {len(records)} ticker(s), {workers} worker(s)")
        if on_progress:
            on_progress("watch_start", len(records))

        items: dict[str, WatchlistItem] = {}
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.analyze_ticker, record): record for record in records}
            for future in as_completed(futures):
                record = futures[future]
                try:
                    items[record.ticker] = future.result()
                except Exception as e:
                    logger.error(f"{record.ticker}: watchlist worker failed: {e}")
                    items[record.ticker] = WatchlistItem(
                        record=record,
                        outcome=Outcome.fail(
                            CauseCode.RUNTIME_ERROR, WATCH_OWNER, {"reason": f"{type(e).__name__}: {e}"}
                        ),
                    )
                if on_progress:
                    on_progress("watch_tick", 1)

        report = WatchlistReport(items=[items[record.ticker] for record in records])
        logger.info(f"Watchlist done: {report.status_counts()}")
        return report

    # ── Checkpoint ───────────────────────────────────────────────────────

    def _load_checkpoint(self, plan: BatchPlan) -> BatchCheckpoint | None:
        checkpoint = BatchCheckpoint.from_json(self.store.get_metadata(plan.checkpoint_key))
        if checkpoint is None:
            return None
        if not checkpoint.matches(plan):
            logger.info("Batch checkpoint does not match this universe; starting over")
            self.store.delete_metadata(plan.checkpoint_key)
            return None
        if checkpoint.next_segment_index >= len(plan.segments) or checkpoint.next_segment_index < 0:
            logger.info("Batch checkpoint already complete; starting over")
            self.store.delete_metadata(plan.checkpoint_key)
            return None
        return checkpoint

    # ── Diagnostics ──────────────────────────────────────────────────────

    def _record_features(self, diagnostics: Diagnostics, plan: BatchPlan) -> None:
        for key, enabled in (
            ("scan.batch.resume_enabled", plan.resume_enabled),
            ("scan.cache.prefer_enabled", self.prefer_cache),
            ("plan.required", self.config.get_bool("plan.required", False)),
        ):
            diagnostics.add_feature_status(resolve_feature_status(key, enabled, True, owner=OWNER))

    def _record_coverage_gate(
        self, diagnostics: Diagnostics, summary: ScanResultSummary, complete: bool
    ) -> None:
        """Trace the coverage floors; a partial run is not gated."""
        min_fetch = self.config.get_float("scan.gate.min_fetch_pct", 0.0)
        min_indicator = self.config.get_float("scan.gate.min_indicator_pct", 0.0)
        threshold = f"fetch>={min_fetch:g}% indicator_tradable>={min_indicator:g}%"
        if not complete:
            diagnostics.add_gate(
                "min_coverage",
                passed=True,
                threshold=threshold,
                cause_code=CauseCode.GATE_SKIP_ON_PARTIAL,
                owner=OWNER_GATE,
                details="skipped on partial run",
            )
            return

        gate = gate_min_coverage(summary, min_fetch, min_indicator)
        if gate.success:
            diagnostics.add_gate("min_coverage", passed=True, threshold=threshold, owner=gate.owner)
            return
        if gate.cause_code == CauseCode.GATE_MIN_FETCH_COVERAGE:
            fail_count = summary.total - summary.fetch_coverage
        else:
            fail_count = summary.tradable_denominator - summary.tradable_indicator_coverage
        logger.warning(f"Run {diagnostics.run_id}: coverage gate failed ({gate.reason})")
        diagnostics.add_gate(
            "min_coverage",
            passed=False,
            fail_count=fail_count,
            threshold=threshold,
            cause_code=gate.cause_code,
            owner=gate.owner,
            details=gate.reason,
        )

    # ── Run ──────────────────────────────────────────────────────────────

    def run(
        self,
        universe: Iterable[UniverseRecord],
        reset_checkpoint: bool = False,
        max_segments: int | None = None,
        workers: int | None = None,
        on_progress: Callable[[str, int], None] | None = None,
    ) -> BatchRunOutcome:
        """Scan ``universe``, resuming a matching checkpoint when enabled.

        Raises:
            EmptyUniverseError: If the universe has no tickers.
        """
        records = prepare_universe(universe, self.config.get_int("scan.max_universe_size", 0))
        top_n = max(1, self.config.get_int("scan.top_n", 15))
        plan = BatchPlan.build(records, self.config, top_n)
        workers = max(1, workers if workers is not None else self.config.get_int("scan.threads", 3))
        segment_limit = max_segments if max_segments is not None else self.config.get_int(
            "scan.batch.max_segments_per_run", 0
        )
        log_every = max(1, self.config.get_int("scan.progress.log_every", 100))

        if reset_checkpoint:
            self.store.delete_metadata(plan.checkpoint_key)
        checkpoint = self._load_checkpoint(plan) if plan.resume_enabled else None

        resumed = checkpoint is not None
        if checkpoint is not None:
            run_id = checkpoint.run_id
            start_index = checkpoint.next_segment_index
            scanned, failed, candidate_count = checkpoint.scanned, checkpoint.failed, checkpoint.candidate_count
            top = list(checkpoint.top_candidates)
            logger.info(f"Resuming run {run_id} at segment {start_index + 1}/{len(plan.segments)}")
        else:
            run_id = self.store.start_run("DAILY")
            start_index, scanned, failed, candidate_count, top = 0, 0, 0, 0, []

        remaining = sum(len(s) for s in plan.segments[start_index:])
        logger.info(
            f"Run {run_id}: {len(records)} tickers in {len(plan.segments)} segment(s), "
            f"{remaining} left, {workers} worker(s)"
        )
        if on_progress:
            on_progress("scan_start", remaining)

        stats = ScanStats()
        index = start_index
        processed = 0
        done = 0
        while index < len(plan.segments) and (segment_limit <= 0 or processed < segment_limit):
            segment = plan.segments[index]
            logger.info(f"Segment {segment.key} ({index + 1}/{len(plan.segments)}): {len(segment)} tickers")
            results: list[TickerScanResult] = []
            for result in self._scan_segment(segment, workers):
                results.append(result)
                stats.add(result)
                done += 1
                if done % log_every == 0:
                    logger.info(
                        f"Progress {done}/{remaining}: candidates={stats.candidates} failed={stats.failed}"
                    )
                if on_progress:
                    on_progress("scan_tick", 1)

            self.store.upsert_scan_results(run_id, results)
            seg_candidates = [r.candidate for r in results if r.candidate is not None]
            top = rank_candidates([*top, *seg_candidates], top_n)
            scanned += len(results)
            failed += sum(1 for r in results if r.failure_reason != ScanFailureReason.NONE)
            candidate_count += len(seg_candidates)
            index += 1
            processed += 1

            if plan.resume_enabled:
                checkpoint = BatchCheckpoint(
                    universe_signature=plan.signature,
                    segment_count=len(plan.segments),
                    next_segment_index=index,
                    run_id=run_id,
                    scanned=scanned,
                    failed=failed,
                    candidate_count=candidate_count,
                    top_n=top_n,
                    top_candidates=top,
                )
                self.store.put_metadata(plan.checkpoint_key, checkpoint.to_json())
            if on_progress:
                on_progress("segment_done", index)

        complete = index >= len(plan.segments)
        if complete:
            self.store.delete_metadata(plan.checkpoint_key)
        self.store.save_candidates(run_id, top)
        self.store.finish_run(
            run_id,
            "SUCCESS" if complete else "PARTIAL",
            universe_size=len(records),
            scanned=scanned,
            candidate_count=candidate_count,
            top_n=top_n,
            message=f"segments {index}/{len(plan.segments)}",
        )

        summary = self.store.load_scan_summary(run_id)
        diagnostics = Diagnostics.from_summary(summary, run_id=run_id, run_mode="DAILY", owner=OWNER)
        diagnostics.config_snapshot.update(
            self.config.snapshot(["scan.threads", "scan.top_n", "scan.min_score", "scan.min_history_bars"])
        )
        self._record_features(diagnostics, plan)
        self._record_coverage_gate(diagnostics, summary, complete)
        if not complete:
            diagnostics.add_note(f"partial run: next segment {index + 1}/{len(plan.segments)}")
        logger.info(
            f"Run {run_id} {'complete' if complete else 'partial'}: scanned={scanned} "
            f"candidates={candidate_count} fetch={summary.fetch_coverage_pct:.1f}% "
            f"indicators(tradable)={summary.indicator_coverage_tradable_pct:.1f}%"
        )
        if on_progress:
            on_progress("scan_done", scanned)

        return BatchRunOutcome(
            run_id=run_id,
            universe_size=len(records),
            total_segments=len(plan.segments),
            processed_segments=processed,
            next_segment_index=index,
            partial_run=not complete,
            top_candidates=top,
            summary=summary,
            resumed=resumed,
            diagnostics=diagnostics,
        )
