"""Exceptions that escalate past a single ticker."""

from __future__ import annotations


class ScreenerError(Exception):
    """Base class for batch-level failures."""


class EmptyUniverseError(ScreenerError):
    """Raised when the universe has no tickers to scan."""


class ConfigError(ScreenerError):
    """Raised when a configuration source cannot be loaded."""
