from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# ── Stored Value Types ───────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Scalar:
    """A plain string stored as-is."""
    text: str


@dataclass(frozen=True, slots=True)
class Structured:
    """A value stored as its canonical JSON text."""
    text: str


StoredValue = Scalar | Structured


# ── Column Store Types ───────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Cell:
    """One version of a cell as returned by the store."""
    value: str
    timestamp_ms: int


@dataclass(frozen=True, slots=True)
class FamilyRule:
    """Garbage-collection rule of a column family.

    A cell version is dropped once it is beyond ``max_versions`` or older
    than ``max_age_seconds`` (whichever comes first).
    """
    max_versions: int = 1
    max_age_seconds: int | None = None

    def is_live(self, cell: Cell, now: int) -> bool:
        if self.max_age_seconds is None:
            return True
        return cell.timestamp_ms + self.max_age_seconds * 1000 > now


@dataclass(slots=True)
class RowResult:
    """A row read from the store: ``data[family][column]`` is newest-first."""
    key: str
    data: dict[str, dict[str, list[Cell]]] = field(default_factory=dict)

    def latest(self, family: str, column: str) -> Cell | None:
        versions = self.data.get(family, {}).get(column)
        return versions[0] if versions else None


# ── TTL Marker Types ─────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MarkerOwner:
    """The primary cell a marker column points at."""
    family: str
    row_key: str
    column: str


@dataclass(frozen=True, slots=True)
class Marker:
    """A marker column read back during a sweep."""
    row_key: str
    qualifier: str
    owner: MarkerOwner
    ttl_seconds: float
    written_at_ms: int

    def is_expired(self, now: int) -> bool:
        return self.written_at_ms + self.ttl_seconds * 1000 <= now


# ── Sweep Types ──────────────────────────────────────────────────────

class SweepState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FILTERING = "filtering"
    DELETING = "deleting"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Outcome of one sweep cycle."""
    scanned: int = 0
    expired: int = 0
    deleted: int = 0
    failed: int = 0
    started_at_ms: int = 0
    duration_ms: float = 0.0
