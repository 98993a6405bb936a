"""Root CLI application for the pullback screener."""

from __future__ import annotations

import logging
from typing import Annotated, Optional

import typer

from screener.cli.formatters import console, output_error, output_json
from screener.cli.plan_cmds import app as plan_app
from screener.cli.scan_cmds import app as scan_app
from screener.config import ScreenerSettings
from screener.core.errors import ScreenerError

app = typer.Typer(
    name="screener",
    help="Pullback screener - daily universe scan, scoring and trade plans",
    no_args_is_help=True,
)

app.add_typer(scan_app, name="scan")
app.add_typer(plan_app, name="plan")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Pullback screener CLI."""
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, ScreenerSettings().log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(levelname)s | %(name)s | %(message)s",
    )


@app.command("backtest")
def backtest(
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Summarize forward returns of the top candidates of recent runs."""
    from screener.engine.backtest import BacktestRunner, to_summary_text
    from screener.storage.store import Store

    settings = ScreenerSettings()
    try:
        config = settings.load_config()
    except ScreenerError as e:
        output_error(str(e))
        return

    store = Store(settings.db_path)
    try:
        report = BacktestRunner(config, store).run()
    finally:
        store.close()

    if output == "json":
        output_json(report)
        return
    console.print(to_summary_text(report))


if __name__ == "__main__":
    app()
