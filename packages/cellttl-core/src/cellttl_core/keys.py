"""Marker row keys and column qualifiers.

A cell that expires at ``expiry_ms`` is recorded in the metadata table
under the row ``ttl#<shard>#<expiry_ms>`` where the shard is
``murmur3_32(str(expiry_ms), seed) % shard_count``. Every process sharing
a store must use the same seed and shard count.

Marker columns are named ``<family>#<row_key>#<column>``. ``%`` and ``#``
inside the parts are percent-escaped so that any row key or column name
round-trips.
"""
from __future__ import annotations

import mmh3

from cellttl_core.errors import MarkerFormatError
from cellttl_core.types import MarkerOwner

MARKER_PREFIX = "ttl"
DELIMITER = "#"


def shard_for(expiry_ms: int, shard_count: int, seed: int) -> int:
    return mmh3.hash(str(expiry_ms), seed, signed=False) % shard_count


def shard_prefix(shard: int) -> str:
    """Row key prefix shared by all marker rows of *shard*."""
    return f"{MARKER_PREFIX}{DELIMITER}{shard}{DELIMITER}"


def encode_marker_key(expiry_ms: int, shard_count: int, seed: int) -> str:
    return shard_prefix(shard_for(expiry_ms, shard_count, seed)) + str(expiry_ms)


def decode_marker_key(key: str) -> tuple[int, int]:
    """Split a marker row key into ``(shard, expiry_ms)``."""
    parts = key.split(DELIMITER)
    if len(parts) != 3 or parts[0] != MARKER_PREFIX:
        raise MarkerFormatError(f"Not a marker row key: {key!r}")
    try:
        return int(parts[1]), int(parts[2])
    except ValueError as exc:
        raise MarkerFormatError(f"Not a marker row key: {key!r}") from exc


def _escape(part: str) -> str:
    return part.replace("%", "%25").replace(DELIMITER, "%23")


def _unescape(part: str) -> str:
    return part.replace("%23", DELIMITER).replace("%25", "%")


def marker_qualifier(family: str, row_key: str, column: str) -> str:
    return DELIMITER.join(_escape(p) for p in (family, row_key, column))


def decode_owner(qualifier: str) -> MarkerOwner:
    """Recover the owning ``(family, row_key, column)`` of a marker column."""
    parts = qualifier.split(DELIMITER)
    if len(parts) != 3 or not all(parts):
        raise MarkerFormatError(f"Not a marker qualifier: {qualifier!r}")
    family, row_key, column = (_unescape(p) for p in parts)
    return MarkerOwner(family=family, row_key=row_key, column=column)
