"""cellttl runtime: per-cell TTL on top of pluggable column-family stores."""
from __future__ import annotations

from cellttl_runtime.builder import StoreBuilder
from cellttl_runtime.client import CellTTLClient
from cellttl_runtime.context import TableContext
from cellttl_runtime.counter import RowCountTracker
from cellttl_runtime.markers import MarkerWriter
from cellttl_runtime.protocols import ColumnStoreAdapter
from cellttl_runtime.sweep import SweepJob

__all__ = [
    "CellTTLClient",
    "ColumnStoreAdapter",
    "MarkerWriter",
    "RowCountTracker",
    "StoreBuilder",
    "SweepJob",
    "TableContext",
]
