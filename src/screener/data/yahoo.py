"""Yahoo Finance daily history via yfinance."""

from __future__ import annotations

import logging
import math
import threading

import pandas as pd
import yfinance as yf
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from screener.core.models import Bar
from screener.data.provider import NO_DATA, PARSE_ERROR, RATE_LIMIT, FetchResult, classify_fetch_error

logger = logging.getLogger(__name__)

# yfinance shares session state across threads; serialize the calls.
_yf_lock = threading.Lock()

_OHLCV = ["Open", "High", "Low", "Close", "Volume"]


class RateLimitedError(Exception):
    """Yahoo answered with a rate-limit response."""


def frame_to_bars(ticker: str, df: pd.DataFrame) -> list[Bar]:
    """Convert a yfinance history frame to ascending, de-duplicated bars.

    Rows without a finite close are dropped.

    Raises:
        KeyError: If an OHLC column is missing.
    """
    df = df.copy()
    df.columns = [str(c).title() for c in df.columns]
    missing = [c for c in _OHLCV[:4] if c not in df.columns]
    if missing:
        raise KeyError(f"history frame missing columns {missing}")
    if "Volume" not in df.columns:
        df["Volume"] = 0.0

    df = df[~df.index.duplicated(keep="last")].sort_index()
    bars = []
    for ts, row in df.iterrows():
        close = float(row["Close"])
        if not math.isfinite(close):
            continue
        volume = float(row["Volume"])
        bars.append(
            Bar(
                ticker=ticker,
                trade_date=pd.Timestamp(ts).date(),
                open=float(row["Open"]),
                high=float(row["High"]),
                low=float(row["Low"]),
                close=close,
                volume=volume if math.isfinite(volume) else 0.0,
            )
        )
    return bars


class YahooDataProvider:
    """Market data provider using Yahoo Finance (yfinance)."""

    def __init__(self, timeout_seconds: int = 20):
        self.timeout_seconds = timeout_seconds

    @retry(
        retry=retry_if_exception_type(RateLimitedError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def _history(self, ticker: str, range: str, interval: str) -> pd.DataFrame:
        try:
            with _yf_lock:
                return yf.Ticker(ticker).history(
                    period=range, interval=interval, auto_adjust=False, timeout=self.timeout_seconds
                )
        except Exception as e:
            if classify_fetch_error(e) == RATE_LIMIT:
                logger.debug(f"{ticker}: rate limited, backing off")
                raise RateLimitedError(str(e)) from e
            raise

    def fetch_daily_history(self, ticker: str, range: str = "2y", interval: str = "1d") -> FetchResult:
        logger.debug(f"Fetching {ticker} history: range={range} interval={interval}")
        try:
            df = self._history(ticker, range, interval)
        except Exception as e:
            category = classify_fetch_error(e)
            logger.warning(f"{ticker}: fetch failed ({category}): {e}")
            return FetchResult(failure_category=category, error=str(e))

        if df is None or df.empty:
            return FetchResult(failure_category=NO_DATA, error="no_data")
        try:
            bars = frame_to_bars(ticker, df)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"{ticker}: cannot parse history: {e}")
            return FetchResult(failure_category=PARSE_ERROR, error=str(e))
        if not bars:
            return FetchResult(failure_category=NO_DATA, error="no_data")
        return FetchResult(bars=tuple(bars))
