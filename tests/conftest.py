"""Shared test fixtures: synthetic daily bars and an isolated config."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from screener.config import Config
from screener.core.models import Bar

# Friday; scanner tests pin "today" to this date.
LAST_DATE = date(2026, 10, 16)


def build_bars(
    closes: list[float],
    ticker: str = "TEST",
    volumes: list[float] | None = None,
    spread: float = 1.0,
    end: date = LAST_DATE,
) -> list[Bar]:
    """One bar per calendar day ending at ``end``; high/low are close +/- spread."""
    n = len(closes)
    volumes = volumes or [200_000.0] * n
    return [
        Bar(
            ticker=ticker,
            trade_date=end - timedelta(days=n - 1 - i),
            open=close,
            high=close + spread,
            low=close - spread,
            close=close,
            volume=volumes[i],
        )
        for i, close in enumerate(closes)
    ]


def pullback_closes() -> list[float]:
    """150 flat, a 20-day slide to 105, then a 10-day rebound to 115 (300 bars)."""
    closes = [150.0] * 270
    closes += [150.0 - 2.25 * (k + 1) for k in range(20)]
    closes += [106.0 + k for k in range(10)]
    return closes


@pytest.fixture
def make_bars():
    return build_bars


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def flat_bars() -> list[Bar]:
    """180 days at 100 with constant 50,000 volume and no intraday range."""
    return build_bars([100.0] * 180, volumes=[50_000.0] * 180, spread=0.0)


def build_pullback_bars(ticker: str = "TEST", end: date = LAST_DATE) -> list[Bar]:
    """Pullback from 150 to 105 with volume doubling over the last five days."""
    closes = pullback_closes()
    volumes = [200_000.0] * (len(closes) - 5) + [400_000.0] * 5
    return build_bars(closes, ticker=ticker, volumes=volumes, end=end)


@pytest.fixture
def last_date() -> date:
    return LAST_DATE


@pytest.fixture
def make_pullback_bars():
    return build_pullback_bars


@pytest.fixture
def pullback_bars() -> list[Bar]:
    return build_pullback_bars()
