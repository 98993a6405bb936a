"""CLI commands for trade plans."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from screener.cli.formatters import output_error, output_json, print_plan
from screener.config import ScreenerSettings
from screener.core.errors import ScreenerError

app = typer.Typer(name="plan", help="Trade plan builder")


@app.command("watchlist")
def plan_watchlist(
    indicators: Annotated[
        str, typer.Argument(help="Indicator JSON blob, or a path to a file containing one")
    ],
    output: Annotated[Optional[str], typer.Option("--output", help="Output format (json)")] = None,
) -> None:
    """Build a trade plan from a stored indicator blob."""
    from screener.plan.builder import TradePlanBuilder

    try:
        config = ScreenerSettings().load_config()
    except ScreenerError as e:
        output_error(str(e))
        return

    raw = indicators
    path = Path(indicators)
    if not indicators.lstrip().startswith("{") and path.is_file():
        raw = path.read_text()

    outcome = TradePlanBuilder(config).build_for_watchlist(raw)
    if output == "json":
        output_json(outcome)
        return
    print_plan(outcome)
