"""T2 Redis Backend: distributed, Redis-backed column store."""
from __future__ import annotations

from cellttl_runtime.backends.redis.column_store import RedisColumnStore

__all__ = [
    "RedisColumnStore",
]
