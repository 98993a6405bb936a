"""Universe segmentation and the resumable batch checkpoint."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError

from screener.config import Config
from screener.core.errors import EmptyUniverseError
from screener.core.models import ScoredCandidate, UniverseRecord

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
DEFAULT_CHUNK_SIZE = 500


def normalize_market(market: str | None) -> str:
    if market is None or not market.strip():
        return "UNKNOWN"
    return market.strip()


def prepare_universe(records: Iterable[UniverseRecord], max_size: int = 0) -> list[UniverseRecord]:
    """Deduplicate by ticker (first wins) and cap at ``max_size`` (0 = no cap).

    Raises:
        EmptyUniverseError: If nothing is left to scan.
    """
    seen: set[str] = set()
    out: list[UniverseRecord] = []
    for record in records:
        ticker = record.ticker.strip()
        if not ticker or ticker in seen:
            continue
        seen.add(ticker)
        out.append(record)
        if 0 < max_size <= len(out):
            break
    if not out:
        raise EmptyUniverseError("Universe is empty; nothing to scan")
    return out


def universe_signature(universe: Iterable[UniverseRecord]) -> str:
    """Stable fingerprint of the ordered (ticker, market) pairs."""
    records = list(universe)
    digest = hashlib.sha256()
    for record in records:
        digest.update(record.ticker.encode())
        digest.update(b"\x1f")
        digest.update(normalize_market(record.market).encode())
        digest.update(b"\x1e")
    return f"{len(records)}:{digest.hexdigest()[:16]}"


@dataclass(frozen=True)
class Segment:
    key: str
    records: tuple[UniverseRecord, ...]

    def __len__(self) -> int:
        return len(self.records)


def segment_by_market(universe: list[UniverseRecord], chunk_size: int) -> list[Segment]:
    grouped: dict[str, list[UniverseRecord]] = {}
    for record in universe:
        grouped.setdefault(normalize_market(record.market), []).append(record)

    segments: list[Segment] = []
    for market, records in grouped.items():
        if chunk_size <= 0 or len(records) <= chunk_size:
            segments.append(Segment(market, tuple(records)))
            continue
        chunks = (len(records) + chunk_size - 1) // chunk_size
        for i in range(chunks):
            part = records[i * chunk_size : (i + 1) * chunk_size]
            segments.append(Segment(f"{market}#{i + 1}/{chunks}", tuple(part)))
    return segments


def segment_by_chunk(universe: list[UniverseRecord], chunk_size: int) -> list[Segment]:
    size = chunk_size if chunk_size > 0 else DEFAULT_CHUNK_SIZE
    return [
        Segment(f"CHUNK#{i // size + 1}", tuple(universe[i : i + size]))
        for i in range(0, len(universe), size)
    ]


@dataclass(frozen=True)
class BatchPlan:
    segments: tuple[Segment, ...]
    resume_enabled: bool
    checkpoint_key: str
    signature: str
    top_n: int

    @classmethod
    def build(cls, universe: list[UniverseRecord], config: Config, top_n: int) -> BatchPlan:
        batch_enabled = config.get_bool("scan.batch.enabled", True)
        by_market = config.get_bool("scan.batch.segment_by_market", True)
        resume_enabled = batch_enabled and config.get_bool("scan.batch.resume_enabled", True)
        chunk_size = max(0, config.get_int("scan.batch.market_chunk_size", 0))

        if not batch_enabled:
            segments = [Segment("ALL", tuple(universe))]
        elif by_market:
            segments = segment_by_market(universe, chunk_size)
        else:
            segments = segment_by_chunk(universe, chunk_size)
        if not segments:
            segments = [Segment("ALL", tuple(universe))]

        return cls(
            segments=tuple(segments),
            resume_enabled=resume_enabled,
            checkpoint_key=config.get_str("scan.batch.checkpoint_key", "daily.scan.batch.checkpoint.v1"),
            signature=universe_signature(universe),
            top_n=top_n,
        )


class BatchCheckpoint(BaseModel):
    """Persisted progress of a segmented scan, written after each finished segment."""

    version: int = CHECKPOINT_VERSION
    universe_signature: str
    segment_count: int
    next_segment_index: int
    run_id: int = 0
    scanned: int = 0
    failed: int = 0
    candidate_count: int = 0
    top_n: int = 15
    top_candidates: list[ScoredCandidate] = []

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | None) -> BatchCheckpoint | None:
        """Parse a stored checkpoint; ``None`` when blank or malformed."""
        if raw is None or not raw.strip():
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed batch checkpoint: {e.error_count()} error(s)")
            return None

    def matches(self, plan: BatchPlan) -> bool:
        return (
            self.version == CHECKPOINT_VERSION
            and self.universe_signature == plan.signature
            and self.segment_count == len(plan.segments)
            and self.top_n == plan.top_n
        )
