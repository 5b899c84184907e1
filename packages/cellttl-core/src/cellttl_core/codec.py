"""Cell codec: turns arbitrary values into storable text and back.

Plain strings are stored verbatim so that cells written by other clients
stay readable. Anything else, including strings that would themselves
parse as JSON, is stored as JSON text so that ``decode(encode(v)) == v``.
"""
from __future__ import annotations

import json
from typing import Any

from cellttl_core.types import Scalar, StoredValue, Structured


def _parses_as_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def classify(value: Any) -> StoredValue:
    """Pick the stored representation of *value*."""
    if value is None:
        return Scalar("")
    if isinstance(value, str) and not _parses_as_json(value):
        return Scalar(value)
    return Structured(
        json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    )


def encode(value: Any) -> str:
    return classify(value).text


def decode(raw: str | bytes | None) -> Any:
    """Parse a stored value, returning it unchanged when it is not JSON."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode()
        except UnicodeDecodeError:
            return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw
