"""SQLite persistence for the universe, daily bars, scan runs and the batch checkpoint."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path

from screener.core.enums import DataInsufficientReason, ScanFailureReason
from screener.core.models import Bar, ScoredCandidate, UniverseRecord
from screener.engine.summary import EXCLUDED_FROM_TRADABLE, ScanResultSummary, TickerScanResult

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS universe (
    ticker TEXT PRIMARY KEY,
    code TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL DEFAULT '',
    market TEXT NOT NULL DEFAULT '',
    active INTEGER NOT NULL DEFAULT 1,
    position INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mode TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'RUNNING',
    universe_size INTEGER DEFAULT 0,
    scanned INTEGER DEFAULT 0,
    candidate_count INTEGER DEFAULT 0,
    top_n INTEGER DEFAULT 0,
    message TEXT DEFAULT '',
    started_at TEXT DEFAULT (datetime('now')),
    finished_at TEXT
);

CREATE TABLE IF NOT EXISTS scan_results (
    run_id INTEGER NOT NULL REFERENCES runs(id),
    ticker TEXT NOT NULL,
    code TEXT DEFAULT '',
    market TEXT DEFAULT '',
    data_source TEXT DEFAULT '',
    last_trade_date TEXT,
    bars_count INTEGER DEFAULT 0,
    last_close REAL,
    fetch_latency_ms INTEGER DEFAULT 0,
    fetch_success INTEGER NOT NULL DEFAULT 0,
    indicator_ready INTEGER NOT NULL DEFAULT 0,
    candidate_ready INTEGER NOT NULL DEFAULT 0,
    insufficient_reason TEXT NOT NULL DEFAULT 'NONE',
    failure_reason TEXT NOT NULL DEFAULT 'none',
    request_failure_reason TEXT NOT NULL DEFAULT 'none',
    cause_code TEXT NOT NULL DEFAULT 'NONE',
    error TEXT DEFAULT '',
    created_at TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (run_id, ticker)
);

CREATE TABLE IF NOT EXISTS bars_daily (
    ticker TEXT NOT NULL,
    trade_date TEXT NOT NULL,
    open REAL NOT NULL,
    high REAL NOT NULL,
    low REAL NOT NULL,
    close REAL NOT NULL,
    volume REAL NOT NULL DEFAULT 0,
    PRIMARY KEY (ticker, trade_date)
);

CREATE TABLE IF NOT EXISTS candidates (
    run_id INTEGER NOT NULL REFERENCES runs(id),
    rank INTEGER NOT NULL,
    ticker TEXT NOT NULL,
    code TEXT DEFAULT '',
    name TEXT DEFAULT '',
    market TEXT DEFAULT '',
    score REAL NOT NULL,
    close REAL NOT NULL,
    reasons_json TEXT NOT NULL DEFAULT '{}',
    indicators_json TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (run_id, ticker)
);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT (datetime('now'))
);
"""

_EXCLUDED_LABELS = tuple(reason.value for reason in EXCLUDED_FROM_TRADABLE)


class Store:
    """SQLite-backed persistence for scan runs and their inputs.

    Worker threads read cached bars and write fetched ones, so every
    statement runs under one lock on a shared connection.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Universe ─────────────────────────────────────────────────────────

    def replace_universe(self, records: Iterable[UniverseRecord]) -> int:
        """Mark every stored ticker inactive, then upsert ``records`` as the active set."""
        rows = [(r.ticker, r.code, r.name, r.market, i) for i, r in enumerate(records)]
        with self._lock:
            self._conn.execute("UPDATE universe SET active = 0")
            self._conn.executemany(
                "INSERT OR REPLACE INTO universe (ticker, code, name, market, active, position, updated_at) "
                "VALUES (?, ?, ?, ?, 1, ?, datetime('now'))",
                rows,
            )
            self._conn.commit()
        return len(rows)

    def list_universe(self, limit: int = 0) -> list[UniverseRecord]:
        query = "SELECT ticker, code, name, market FROM universe WHERE active = 1 ORDER BY position, ticker"
        params: list = []
        if limit > 0:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [UniverseRecord(**dict(r)) for r in rows]

    # ── Runs ─────────────────────────────────────────────────────────────

    def start_run(self, mode: str = "DAILY") -> int:
        with self._lock:
            cur = self._conn.execute("INSERT INTO runs (mode) VALUES (?)", (mode,))
            self._conn.commit()
        return int(cur.lastrowid)

    def finish_run(
        self,
        run_id: int,
        status: str,
        universe_size: int = 0,
        scanned: int = 0,
        candidate_count: int = 0,
        top_n: int = 0,
        message: str = "",
    ) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE runs SET status = ?, universe_size = ?, scanned = ?, candidate_count = ?, "
                "top_n = ?, message = ?, finished_at = datetime('now') WHERE id = ?",
                (status, universe_size, scanned, candidate_count, top_n, message, run_id),
            )
            self._conn.commit()

    def get_run(self, run_id: int) -> dict | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        return dict(row) if row else None

    def list_runs(self, status: str | None = None, limit: int = 20) -> list[dict]:
        query = "SELECT * FROM runs"
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    # ── Scan results ─────────────────────────────────────────────────────

    def upsert_scan_results(self, run_id: int, results: Iterable[TickerScanResult]) -> int:
        rows = [
            (
                run_id,
                r.record.ticker,
                r.record.code,
                r.record.market,
                r.data_source,
                r.last_trade_date.isoformat() if r.last_trade_date else None,
                max(0, r.bars_count),
                r.last_close if r.last_close is not None and r.last_close > 0 else None,
                max(0, r.fetch_latency_ms),
                int(r.fetch_success),
                int(r.indicator_ready),
                int(r.candidate is not None),
                r.insufficient_reason.value,
                r.failure_reason.value,
                r.request_failure_reason.value,
                r.cause_code.value,
                r.error,
            )
            for r in results
        ]
        if not rows:
            return 0
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO scan_results (run_id, ticker, code, market, data_source, "
                "last_trade_date, bars_count, last_close, fetch_latency_ms, fetch_success, "
                "indicator_ready, candidate_ready, insufficient_reason, failure_reason, "
                "request_failure_reason, cause_code, error) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            self._conn.commit()
        return len(rows)

    def load_scan_summary(self, run_id: int) -> ScanResultSummary:
        """Aggregate a run's rows into the same shape as :meth:`ScanResultSummary.from_results`."""
        placeholders = ", ".join("?" for _ in _EXCLUDED_LABELS)
        with self._lock:
            cov = self._conn.execute(
                "SELECT COUNT(*) AS total, "
                "COALESCE(SUM(fetch_success), 0) AS fetch_coverage, "
                "COALESCE(SUM(indicator_ready), 0) AS indicator_coverage, "
                f"COALESCE(SUM(CASE WHEN failure_reason NOT IN ({placeholders}) THEN 1 ELSE 0 END), 0) "
                "AS tradable_denominator, "
                f"COALESCE(SUM(CASE WHEN failure_reason NOT IN ({placeholders}) "
                "AND indicator_ready = 1 THEN 1 ELSE 0 END), 0) AS tradable_indicator_coverage "
                "FROM scan_results WHERE run_id = ?",
                (*_EXCLUDED_LABELS, *_EXCLUDED_LABELS, run_id),
            ).fetchone()
            failure_rows = self._conn.execute(
                "SELECT failure_reason AS value, COUNT(*) AS n FROM scan_results "
                "WHERE run_id = ? GROUP BY failure_reason",
                (run_id,),
            ).fetchall()
            request_rows = self._conn.execute(
                "SELECT request_failure_reason AS value, COUNT(*) AS n FROM scan_results "
                "WHERE run_id = ? AND request_failure_reason != 'none' GROUP BY request_failure_reason",
                (run_id,),
            ).fetchall()
            insufficient_rows = self._conn.execute(
                "SELECT insufficient_reason AS value, COUNT(*) AS n FROM scan_results "
                "WHERE run_id = ? GROUP BY insufficient_reason",
                (run_id,),
            ).fetchall()

        failure_counts: dict[ScanFailureReason, int] = {}
        for row in failure_rows:
            reason = ScanFailureReason.from_label(row["value"])
            failure_counts[reason] = failure_counts.get(reason, 0) + row["n"]
        request_counts: dict[ScanFailureReason, int] = {}
        for row in request_rows:
            reason = ScanFailureReason.from_label(row["value"])
            request_counts[reason] = request_counts.get(reason, 0) + row["n"]
        insufficient_counts: dict[DataInsufficientReason, int] = {}
        for row in insufficient_rows:
            reason = DataInsufficientReason.from_text(row["value"])
            insufficient_counts[reason] = insufficient_counts.get(reason, 0) + row["n"]

        return ScanResultSummary(
            total=cov["total"],
            fetch_coverage=cov["fetch_coverage"],
            indicator_coverage=cov["indicator_coverage"],
            tradable_denominator=cov["tradable_denominator"],
            tradable_indicator_coverage=cov["tradable_indicator_coverage"],
            excluded_from_tradable={r.value: failure_counts.get(r, 0) for r in EXCLUDED_FROM_TRADABLE},
            failure_counts=failure_counts,
            request_failure_counts=request_counts,
            insufficient_counts=insufficient_counts,
        )

    def data_source_counts(self, run_id: int) -> dict[str, int]:
        out = {"yahoo": 0, "cache": 0, "other": 0}
        with self._lock:
            rows = self._conn.execute(
                "SELECT data_source, COUNT(*) AS n FROM scan_results WHERE run_id = ? GROUP BY data_source",
                (run_id,),
            ).fetchall()
        for row in rows:
            key = (row["data_source"] or "").strip().lower()
            key = key if key in out else "other"
            out[key] += row["n"]
        return out

    # ── Daily bars ───────────────────────────────────────────────────────

    def upsert_bars(self, bars: Iterable[Bar]) -> int:
        rows = [
            (b.ticker, b.trade_date.isoformat(), b.open, b.high, b.low, b.close, b.volume)
            for b in bars
        ]
        if not rows:
            return 0
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO bars_daily (ticker, trade_date, open, high, low, close, volume) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            self._conn.commit()
        return len(rows)

    def load_bars(self, ticker: str, limit: int = 0, since: date | None = None) -> list[Bar]:
        """Bars for ``ticker`` in ascending date order (the most recent ``limit`` when given)."""
        query = "SELECT * FROM bars_daily WHERE ticker = ?"
        params: list = [ticker]
        if since is not None:
            query += " AND trade_date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY trade_date DESC" if limit > 0 else " ORDER BY trade_date ASC"
        if limit > 0:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        bars = [
            Bar(
                ticker=r["ticker"],
                trade_date=date.fromisoformat(r["trade_date"]),
                open=r["open"],
                high=r["high"],
                low=r["low"],
                close=r["close"],
                volume=r["volume"],
            )
            for r in rows
        ]
        if limit > 0:
            bars.reverse()
        return bars

    # ── Candidates ───────────────────────────────────────────────────────

    def save_candidates(self, run_id: int, candidates: Iterable[ScoredCandidate]) -> int:
        rows = [
            (run_id, rank, c.ticker, c.code, c.name, c.market, c.score, c.close, c.reasons_json, c.indicators_json)
            for rank, c in enumerate(candidates, start=1)
        ]
        with self._lock:
            self._conn.execute("DELETE FROM candidates WHERE run_id = ?", (run_id,))
            self._conn.executemany(
                "INSERT OR REPLACE INTO candidates (run_id, rank, ticker, code, name, market, score, "
                "close, reasons_json, indicators_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            self._conn.commit()
        return len(rows)

    def load_candidates(self, run_id: int, limit: int = 0) -> list[ScoredCandidate]:
        query = (
            "SELECT ticker, code, name, market, score, close, reasons_json, indicators_json "
            "FROM candidates WHERE run_id = ? ORDER BY rank"
        )
        params: list = [run_id]
        if limit > 0:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [ScoredCandidate(**dict(r)) for r in rows]

    # ── Metadata ─────────────────────────────────────────────────────────

    def get_metadata(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def put_metadata(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO metadata (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now().isoformat()),
            )
            self._conn.commit()

    def delete_metadata(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM metadata WHERE key = ?", (key,))
            self._conn.commit()
