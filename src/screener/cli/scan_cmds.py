"""CLI commands for batch scans and their coverage."""

from __future__ import annotations

import json
from contextlib import nullcontext
from pathlib import Path
from typing import Annotated, Optional

import typer

from screener.cli.formatters import (
    console,
    output_error,
    output_json,
    print_run_outcome,
    print_summary,
    print_watchlist,
)
from screener.config import ScreenerSettings
from screener.core.errors import ScreenerError
from screener.core.models import UniverseRecord

app = typer.Typer(name="scan", help="Batch universe scans")


def load_universe_file(path: Path) -> list[UniverseRecord]:
    """Read a JSON list of tickers or ``{ticker, code, name, market}`` objects."""
    try:
        raw = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ScreenerError(f"Cannot read universe file {path}: {e}") from e
    if not isinstance(raw, list):
        raise ScreenerError(f"Universe file {path} must contain a JSON list")

    records = []
    for item in raw:
        if isinstance(item, str):
            records.append(UniverseRecord(ticker=item.strip().upper()))
        elif isinstance(item, dict) and item.get("ticker"):
            records.append(
                UniverseRecord(
                    ticker=str(item["ticker"]).strip().upper(),
                    code=str(item.get("code", "")),
                    name=str(item.get("name", "")),
                    market=str(item.get("market", "")),
                )
            )
    return records


@app.command("run")
def scan_run(
    reset_checkpoint: Annotated[
        bool, typer.Option("--reset-checkpoint", help="Discard any saved batch checkpoint first")
    ] = False,
    max_segments: Annotated[
        Optional[int], typer.Option("--max-segments", help="Segments to process this invocation (0 = all)")
    ] = None,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", help="Worker threads per segment")] = None,
    universe_file: Annotated[
        Optional[Path], typer.Option("--universe-file", help="JSON universe to store before scanning")
    ] = None,
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Scan the stored universe, resuming an unfinished batch when possible."""
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

    from screener.data.yahoo import YahooDataProvider
    from screener.engine.scanner import BatchScanner
    from screener.storage.store import Store

    settings = ScreenerSettings()
    try:
        config = settings.load_config()
    except ScreenerError as e:
        output_error(str(e))
        return

    store = Store(settings.db_path)
    try:
        if universe_file is not None:
            try:
                records = load_universe_file(universe_file)
            except ScreenerError as e:
                output_error(str(e))
                return
            store.replace_universe(records)
        universe = store.list_universe()

        provider = YahooDataProvider(timeout_seconds=config.get_int("scan.fetch_timeout_sec", 20))
        scanner = BatchScanner(config, store, provider)

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            disable=output == "json",
        )
        task_ids: dict[str, int] = {}

        def on_progress(phase: str, advance: int = 1) -> None:
            if phase == "scan_start":
                task_ids["scan"] = progress.add_task("[cyan]Scanning universe...", total=advance)
            elif phase == "scan_tick" and "scan" in task_ids:
                progress.update(task_ids["scan"], advance=advance)

        try:
            with progress:
                outcome = scanner.run(
                    universe,
                    reset_checkpoint=reset_checkpoint,
                    max_segments=max_segments,
                    workers=workers,
                    on_progress=on_progress,
                )
        except ScreenerError as e:
            output_error(str(e))
            return
    finally:
        store.close()

    if output == "json":
        output_json(outcome)
        return
    print_run_outcome(outcome)


@app.command("watchlist")
def scan_watchlist(
    tickers: Annotated[Optional[list[str]], typer.Argument(help="Tickers to analyze")] = None,
    watchlist_file: Annotated[
        Optional[Path], typer.Option("--watchlist-file", help="JSON list of tickers or ticker objects")
    ] = None,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", help="Worker threads")] = None,
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Analyze watchlist tickers through the full pipeline, skipping the liquidity gate."""
    from screener.data.yahoo import YahooDataProvider
    from screener.engine.scanner import BatchScanner
    from screener.storage.store import Store

    settings = ScreenerSettings()
    try:
        config = settings.load_config()
        symbols = list(tickers or [])
        if watchlist_file is not None:
            symbols += [r.ticker for r in load_universe_file(watchlist_file)]
    except ScreenerError as e:
        output_error(str(e))
        return
    if not any(s.strip() for s in symbols):
        output_error("Watchlist is empty; pass tickers or --watchlist-file")
        return

    store = Store(settings.db_path)
    try:
        provider = YahooDataProvider(timeout_seconds=config.get_int("scan.fetch_timeout_sec", 20))
        scanner = BatchScanner(config, store, provider)
        status = console.status("[bold green]Analyzing watchlist...", spinner="dots")
        with status if output != "json" else nullcontext():
            report = scanner.analyze_watchlist(symbols, workers=workers)
    finally:
        store.close()

    if output == "json":
        output_json(report)
        return
    print_watchlist(report)


@app.command("summary")
def scan_summary(
    run_id: Annotated[int, typer.Argument(help="Run ID to summarize")],
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Show the coverage summary of a stored run."""
    from screener.storage.store import Store

    settings = ScreenerSettings()
    store = Store(settings.db_path)
    try:
        run = store.get_run(run_id)
        if run is None:
            output_error(f"Run {run_id} not found")
            return
        summary = store.load_scan_summary(run_id)
        sources = store.data_source_counts(run_id)
    finally:
        store.close()

    if output == "json":
        output_json({"run": run, "summary": summary.to_dict(), "data_sources": sources})
        return
    console.print(f"[bold]Run {run_id}[/bold] {run['mode']} {run['status']} started {run['started_at']}")
    print_summary(summary, title=f"Run {run_id} Coverage")
    console.print(
        f"[dim]Sources: yahoo={sources['yahoo']} cache={sources['cache']} other={sources['other']}[/dim]"
    )


@app.command("status")
def scan_status(
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Show the saved batch checkpoint, if any."""
    from screener.engine.batch import BatchCheckpoint
    from screener.storage.store import Store

    settings = ScreenerSettings()
    try:
        config = settings.load_config()
    except ScreenerError as e:
        output_error(str(e))
        return

    key = config.get_str("scan.batch.checkpoint_key", "daily.scan.batch.checkpoint.v1")
    store = Store(settings.db_path)
    try:
        checkpoint = BatchCheckpoint.from_json(store.get_metadata(key))
    finally:
        store.close()

    if checkpoint is None:
        if output == "json":
            output_json({"checkpoint": None})
        else:
            console.print("[dim]No batch checkpoint; the next scan starts from the first segment.[/dim]")
        return

    if output == "json":
        output_json({"checkpoint": checkpoint.model_dump(mode="json")})
        return
    console.print(
        f"[bold]Run {checkpoint.run_id}[/bold]: next segment "
        f"{checkpoint.next_segment_index + 1}/{checkpoint.segment_count}, "
        f"scanned {checkpoint.scanned}, failed {checkpoint.failed}, "
        f"candidates {checkpoint.candidate_count}"
    )
