from __future__ import annotations


class CellTTLError(Exception):
    """Base exception for all cellttl errors."""


# ── Backend Errors ───────────────────────────────────────────────────

class BackendError(CellTTLError):
    """Error from a column store backend."""


class BackendUnavailableError(BackendError):
    """Backend is not reachable or not configured."""


class TableNotFoundError(BackendError):
    """Table (or column family) does not exist in the store."""


class RowNotFoundError(BackendError):
    """The store has no such row.

    Read paths translate this into an empty result; it never reaches
    callers of the foreground API.
    """

    def __init__(self, table: str, row_key: str) -> None:
        super().__init__(f"Unknown row: {row_key!r} in table {table!r}")
        self.table = table
        self.row_key = row_key


class PartialWriteError(BackendError):
    """Some of the concurrently dispatched sub-writes failed.

    The sub-writes that succeeded stay committed.
    """

    def __init__(self, errors: list[BaseException], succeeded: int) -> None:
        super().__init__(
            f"{len(errors)} sub-write(s) failed, {succeeded} succeeded: "
            + "; ".join(repr(e) for e in errors)
        )
        self.errors = errors
        self.succeeded = succeeded


# ── Marker Errors ────────────────────────────────────────────────────

class MarkerFormatError(CellTTLError):
    """A marker row key or column qualifier cannot be decoded."""


# ── Config Errors ────────────────────────────────────────────────────

class ConfigError(CellTTLError):
    """Invalid or missing configuration."""
