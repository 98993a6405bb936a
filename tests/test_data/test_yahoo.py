"""Tests for the Yahoo Finance provider."""

from __future__ import annotations

from datetime import date

import numpy as np
import pandas as pd
import pytest

from screener.data.provider import NO_DATA, PARSE_ERROR, RATE_LIMIT
from screener.data.yahoo import RateLimitedError, YahooDataProvider, frame_to_bars


def _frame(dates, closes, volumes=None) -> pd.DataFrame:
    n = len(closes)
    return pd.DataFrame(
        {
            "Open": closes,
            "High": [c + 1 for c in closes],
            "Low": [c - 1 for c in closes],
            "Close": closes,
            "Volume": volumes if volumes is not None else [1_000.0] * n,
        },
        index=pd.DatetimeIndex(dates, tz="America/New_York"),
    )


class TestFrameToBars:
    def test_sorted_and_deduplicated(self):
        df = _frame(["2026-10-15", "2026-10-14", "2026-10-15"], [101.0, 100.0, 102.0])
        bars = frame_to_bars("AAPL", df)
        assert [b.trade_date for b in bars] == [date(2026, 10, 14), date(2026, 10, 15)]
        assert bars[-1].close == 102.0
        assert bars[0].ticker == "AAPL"
        assert bars[0].high == 101.0

    def test_drops_missing_close_and_zeroes_missing_volume(self):
        df = _frame(["2026-10-13", "2026-10-14"], [np.nan, 100.0], volumes=[5.0, np.nan])
        bars = frame_to_bars("AAPL", df)
        assert len(bars) == 1
        assert bars[0].volume == 0.0

    def test_lowercase_columns_and_no_volume(self):
        df = _frame(["2026-10-14"], [100.0]).drop(columns=["Volume"])
        df.columns = [c.lower() for c in df.columns]
        bars = frame_to_bars("AAPL", df)
        assert bars[0].volume == 0.0

    def test_missing_column(self):
        with pytest.raises(KeyError):
            frame_to_bars("AAPL", _frame(["2026-10-14"], [100.0]).drop(columns=["Low"]))


class TestYahooDataProvider:
    def test_success(self, monkeypatch):
        provider = YahooDataProvider()
        monkeypatch.setattr(provider, "_history", lambda t, r, i: _frame(["2026-10-14"], [100.0]))
        result = provider.fetch_daily_history("AAPL")
        assert result.ok
        assert result.bars[0].close == 100.0

    def test_empty_frame_is_no_data(self, monkeypatch):
        provider = YahooDataProvider()
        monkeypatch.setattr(provider, "_history", lambda t, r, i: pd.DataFrame())
        result = provider.fetch_daily_history("ZZZZ")
        assert not result.ok
        assert result.failure_category == NO_DATA

    def test_unparsable_frame(self, monkeypatch):
        provider = YahooDataProvider()
        monkeypatch.setattr(provider, "_history", lambda t, r, i: pd.DataFrame({"Close": [1.0]}))
        assert provider.fetch_daily_history("AAPL").failure_category == PARSE_ERROR

    def test_exception_is_classified(self, monkeypatch):
        def _raise(t, r, i):
            raise RateLimitedError("Too Many Requests")

        provider = YahooDataProvider()
        monkeypatch.setattr(provider, "_history", _raise)
        result = provider.fetch_daily_history("AAPL")
        assert result.failure_category == RATE_LIMIT
        assert "Too Many Requests" in result.error
