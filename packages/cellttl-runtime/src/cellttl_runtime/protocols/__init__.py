"""Runtime protocol definitions for pluggable store backends."""
from __future__ import annotations

from cellttl_runtime.protocols.column_store import ColumnStoreAdapter

__all__ = [
    "ColumnStoreAdapter",
]
