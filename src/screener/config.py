"""Flat key/value configuration injected into every pipeline component.

``Config`` layers explicit values over ``DEFAULTS``; ``ScreenerSettings`` reads
the process-level settings (database path, config file, log level) from the
environment with the ``SCREENER_`` prefix.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings

from screener.core.errors import ConfigError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "y", "on"}
_FALSE_VALUES = {"false", "0", "no", "n", "off"}

DEFAULTS: dict[str, str] = {
    # ── Scan ──────────────────────────────────────────────────────────────
    "scan.threads": "3",
    "scan.top_n": "15",
    "scan.max_universe_size": "0",
    "scan.min_history_bars": "180",
    "scan.min_price": "5",
    "scan.max_price": "100000",
    "scan.min_avg_volume": "50000",
    "scan.min_score": "55",
    "scan.history_range": "2y",
    "scan.history_interval": "1d",
    "scan.fetch_timeout_sec": "20",
    "scan.cache.prefer_enabled": "true",
    "scan.cache.fresh_days": "2",
    "scan.tradable.min_price": "5",
    "scan.tradable.min_avg_volume_20": "50000",
    "scan.tradable.max_zero_volume_days_20": "3",
    "scan.tradable.flat_lookback_days": "5",
    "scan.tradable.max_flat_days": "3",
    "scan.batch.enabled": "true",
    "scan.batch.segment_by_market": "true",
    "scan.batch.market_chunk_size": "0",
    "scan.batch.resume_enabled": "true",
    "scan.batch.max_segments_per_run": "0",
    "scan.batch.checkpoint_key": "daily.scan.batch.checkpoint.v1",
    "scan.progress.log_every": "100",
    "scan.gate.min_fetch_pct": "0",
    "scan.gate.min_indicator_pct": "0",
    # ── Candidate filter ──────────────────────────────────────────────────
    "filter.min_signals": "3",
    "filter.hard.max_drop_3d_pct": "-8",
    "filter.pullback_threshold_pct": "-8",
    "filter.max_drawdown_pct": "-45",
    "filter.rsi_floor": "20",
    "filter.rsi_ceiling": "55",
    "filter.max_pct_from_sma20": "2",
    "filter.max_pct_from_sma60": "6",
    "filter.band_proximity_pct": "3",
    "filter.volume_support_ratio": "1.0",
    # ── Risk filter ───────────────────────────────────────────────────────
    "risk.max_atr_pct": "9",
    "risk.max_volatility_pct": "80",
    "risk.max_drawdown_pct": "60",
    "risk.min_volume_ratio": "0.3",
    "risk.fail_atr_multiplier": "1.5",
    "risk.fail_volatility_multiplier": "1.4",
    "risk.penalty.atr_scale": "1.7",
    "risk.penalty.atr_cap": "18",
    "risk.penalty.volatility_scale": "0.45",
    "risk.penalty.volatility_cap": "18",
    "risk.penalty.drawdown_scale": "1.1",
    "risk.penalty.drawdown_cap": "22",
    "risk.penalty.liquidity": "12",
    # ── Scoring ───────────────────────────────────────────────────────────
    "score.weight_pullback": "0.22",
    "score.weight_rsi": "0.23",
    "score.weight_sma_gap": "0.16",
    "score.weight_band": "0.14",
    "score.weight_rebound": "0.12",
    "score.weight_volume": "0.13",
    # ── Trade plan ────────────────────────────────────────────────────────
    "rr.min": "1.5",
    "plan.required": "false",
    "plan.rr.min_floor": "1.1",
    "plan.entry.buffer_pct": "0.5",
    "plan.entry.max_deviation_pct": "8.0",
    "plan.stop.atr_mult": "1.5",
    "plan.target.high_lookback_mult": "0.98",
    "plan.gate.max_volatility_pct": "80",
    "plan.gate.min_volume_ratio": "0.3",
    "stop.loss.lookbackDays": "20",
    "stop.loss.bufferPct": "0.02",
    # ── Backtest ──────────────────────────────────────────────────────────
    "backtest.lookback_runs": "30",
    "backtest.top_k": "5",
    "backtest.hold_days": "10",
}


def _flatten(prefix: str, value: Any, out: dict[str, str]) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            name = str(key).strip()
            if not name:
                continue
            _flatten(f"{prefix}.{name}" if prefix else name, item, out)
        return
    if not prefix:
        return
    if isinstance(value, (list, tuple)):
        out[prefix] = ",".join("" if v is None else str(v) for v in value)
    elif isinstance(value, bool):
        out[prefix] = "true" if value else "false"
    else:
        out[prefix] = "" if value is None else str(value)


class Config:
    """Immutable flat mapping of dotted keys to string values.

    Typed accessors parse on read. A value that cannot be parsed logs a
    warning and falls back to the caller's default (or the built-in default
    when the caller gives none).
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        working_dir: Path | str | None = None,
    ):
        flat: dict[str, str] = {}
        _flatten("", dict(values or {}), flat)
        self._values = MappingProxyType(flat)
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], working_dir: Path | str | None = None) -> Config:
        """Build from a flat or nested mapping; nested keys are joined with dots."""
        return cls(values, working_dir)

    @classmethod
    def from_json_file(cls, path: Path | str) -> Config:
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        logger.debug(f"Loaded {len(data)} top-level config entries from {path}")
        return cls(data, path.parent)

    def with_overrides(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Config:
        """Return a new Config with the given keys replaced.

        Keyword names use ``__`` in place of dots, e.g. ``scan__threads=4``.
        """
        merged: dict[str, Any] = dict(self._values)
        flat: dict[str, str] = {}
        _flatten("", dict(values or {}), flat)
        merged.update(flat)
        for key, value in kwargs.items():
            _flatten(key.replace("__", "."), value, merged)
        return Config(merged, self.working_dir)

    # ── Raw access ────────────────────────────────────────────────────────

    def raw(self, key: str) -> str:
        """Explicit value if set and non-blank, else the built-in default, else ``""``."""
        value = self._values.get(key)
        if value is not None and value.strip():
            return value.strip()
        return DEFAULTS.get(key, "")

    def source_of(self, key: str) -> str:
        value = self._values.get(key)
        if value is not None and value.strip():
            return "override"
        return "default"

    def __contains__(self, key: object) -> bool:
        return key in self._values or key in DEFAULTS

    # ── Typed accessors ───────────────────────────────────────────────────

    def get_str(self, key: str, default: str = "") -> str:
        return self.raw(key) or default

    def get_bool(self, key: str, default: bool | None = None) -> bool:
        value = self.raw(key).lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        if value:
            logger.warning(f"Config {key}={value!r} is not a boolean; using default")
        return bool(default) if default is not None else False

    def get_int(self, key: str, default: int | None = None) -> int:
        value = self.raw(key)
        try:
            return int(value)
        except ValueError:
            if value:
                logger.warning(f"Config {key}={value!r} is not an integer; using default")
            return default if default is not None else self._default_number(key, int)

    def get_float(self, key: str, default: float | None = None) -> float:
        value = self.raw(key)
        try:
            return float(value)
        except ValueError:
            if value:
                logger.warning(f"Config {key}={value!r} is not a number; using default")
            return default if default is not None else self._default_number(key, float)

    def get_path(self, key: str) -> Path:
        value = self.raw(key)
        if not value:
            return self.working_dir
        return (self.working_dir / value).resolve()

    def get_list(self, key: str) -> list[str]:
        value = self.raw(key)
        if not value:
            return []
        return [token.strip() for token in value.replace(";", ",").split(",") if token.strip()]

    def snapshot(self, keys: Iterable[str]) -> dict[str, str]:
        """Current value of each key, for run diagnostics."""
        return {key: self.raw(key) for key in keys}

    @staticmethod
    def _default_number(key: str, kind: type) -> Any:
        try:
            return kind(DEFAULTS.get(key, "0"))
        except ValueError:
            return kind(0)


class ScreenerSettings(BaseSettings):
    """Process settings, loaded from env vars with the SCREENER_ prefix."""

    model_config = {"env_prefix": "SCREENER_", "extra": "ignore", "env_file": ".env"}

    db_path: Path = Field(default=Path("data/screener.db"))
    config_file: Path | None = None
    log_level: str = "WARNING"
    history_range: str = "2y"
    fetch_timeout_seconds: int = 20

    def load_config(self) -> Config:
        """Build the pipeline Config from ``config_file`` plus explicitly set settings."""
        if self.config_file is not None:
            config = Config.from_json_file(self.config_file)
        else:
            config = Config()
        overrides: dict[str, Any] = {}
        if "history_range" in self.model_fields_set:
            overrides["scan.history_range"] = self.history_range
        if "fetch_timeout_seconds" in self.model_fields_set:
            overrides["scan.fetch_timeout_sec"] = self.fetch_timeout_seconds
        return config.with_overrides(overrides) if overrides else config
