"""T1 SQLite Backend: single-file, WAL-mode column store."""
from __future__ import annotations

from cellttl_runtime.backends.sqlite.column_store import SQLiteColumnStore

__all__ = [
    "SQLiteColumnStore",
]
