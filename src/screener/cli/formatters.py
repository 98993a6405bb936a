"""Output formatters for the CLI - JSON and rich table output."""

from __future__ import annotations

import json
import math
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()


def output_json(data: Any, file=None) -> None:
    """Write JSON output to stdout."""
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    elif hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    elif isinstance(data, list) and data and hasattr(data[0], "model_dump"):
        data = [item.model_dump(mode="json") for item in data]
    print(json.dumps(data, indent=2, default=str), file=file or sys.stdout)


def output_error(message: str, code: int = 1) -> None:
    """Write JSON error to stderr and exit."""
    output_json({"error": message, "code": code}, file=sys.stderr)
    raise SystemExit(code)


def _fmt(value: float) -> str:
    if value is None or not math.isfinite(value):
        return "N/A"
    return f"{value:,.2f}"


def print_summary(summary: Any, title: str = "Scan Coverage") -> None:
    """Print coverage percentages and the non-zero failure counts of a summary."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Tickers", str(summary.total))
    table.add_row("Fetch coverage", f"{summary.fetch_coverage} ({summary.fetch_coverage_pct:.1f}%)")
    table.add_row(
        "Indicator coverage", f"{summary.indicator_coverage} ({summary.indicator_coverage_pct:.1f}%)"
    )
    pct = summary.indicator_coverage_tradable_pct
    color = "green" if pct >= 80 else "yellow" if pct >= 50 else "red"
    table.add_row(
        "Indicator coverage (tradable)",
        f"[{color}]{summary.tradable_indicator_coverage}/{summary.tradable_denominator} ({pct:.1f}%)[/{color}]",
    )
    for reason, count in summary.failure_counts.items():
        if count and reason.value != "none":
            table.add_row(f"  failure: {reason.value}", str(count))
    for reason, count in summary.request_failure_counts.items():
        if count:
            table.add_row(f"  request: {reason.value}", str(count))

    console.print(table)


def print_candidates(candidates: list[Any], title: str = "Top Candidates") -> None:
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Ticker", style="cyan")
    table.add_column("Name")
    table.add_column("Market")
    table.add_column("Score", justify="right")
    table.add_column("Close", justify="right")

    for rank, c in enumerate(candidates, start=1):
        color = "green" if c.score >= 70 else "yellow"
        table.add_row(
            str(rank), c.ticker, c.name, c.market, f"[{color}]{c.score:.2f}[/{color}]", _fmt(c.close)
        )

    console.print(table)


def print_run_outcome(outcome: Any) -> None:
    """Print the batch position, coverage and top candidates of a scan run."""
    state = "[yellow]PARTIAL[/yellow]" if outcome.partial_run else "[green]COMPLETE[/green]"
    resumed = " (resumed)" if outcome.resumed else ""
    console.print(
        f"[bold]Run {outcome.run_id}[/bold] {state}{resumed}: "
        f"segments {outcome.next_segment_index}/{outcome.total_segments}, "
        f"universe {outcome.universe_size}"
    )
    print_summary(outcome.summary)
    if outcome.top_candidates:
        print_candidates(outcome.top_candidates)
    else:
        console.print("[dim]No candidates.[/dim]")


def print_plan(outcome: Any) -> None:
    """Print a trade plan or the cause it was rejected with."""
    if outcome.failed:
        console.print(f"[red]No plan:[/red] {outcome.reason}")
        for key, value in outcome.details.items():
            console.print(f"  [dim]{key}[/dim] = {value}")
        return

    plan = outcome.value
    table = Table(title="Trade Plan")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Entry", f"{_fmt(plan.entry_low)} - {_fmt(plan.entry_high)}")
    table.add_row("Stop loss", f"[red]{_fmt(plan.stop_loss)}[/red]")
    table.add_row("Take profit", f"[green]{_fmt(plan.take_profit)}[/green]")
    table.add_row("Reward/risk", f"{plan.rr_ratio:.2f}")
    console.print(table)


_WATCH_COLORS = {"CANDIDATE": "green", "OBSERVE": "yellow", "RISK": "red", "ERROR": "dim"}


def print_watchlist(report: Any) -> None:
    """Print one row per watchlist ticker with its verdict and reason."""
    table = Table(title="Watchlist")
    table.add_column("Ticker", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Close", justify="right")
    table.add_column("Source", style="dim")
    table.add_column("Reason")

    for item in report.items:
        status = item.status.value
        color = _WATCH_COLORS.get(status, "white")
        table.add_row(
            item.ticker,
            item.record.name,
            f"[{color}]{status}[/{color}]",
            f"{item.score:.2f}" if item.score is not None else "-",
            _fmt(item.last_close) if item.last_close is not None else "-",
            item.data_source or "-",
            "" if item.outcome.success else item.outcome.reason,
        )

    console.print(table)
    counts = report.status_counts()
    console.print("[dim]" + "  ".join(f"{k}={v}" for k, v in counts.items()) + "[/dim]")
