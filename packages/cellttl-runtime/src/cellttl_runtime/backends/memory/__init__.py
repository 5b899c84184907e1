"""T0 In-Process Backend: dict-based column store for tests and single processes."""
from __future__ import annotations

from cellttl_runtime.backends.memory.column_store import InProcessColumnStore

__all__ = [
    "InProcessColumnStore",
]
