"""Daily equity pullback screener."""

__version__ = "0.1.0"
