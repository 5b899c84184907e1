from __future__ import annotations

from typing import TYPE_CHECKING

from cellttl_core.errors import BackendError
from cellttl_core.types import Cell, RowResult

if TYPE_CHECKING:
    from collections.abc import Iterable


def build_row(
    row_key: str,
    cells: Iterable[tuple[str, str, list[Cell]]],
    *,
    family: str | None = None,
    column: str | None = None,
) -> RowResult:
    """Assemble a :class:`RowResult` from ``(family, column, versions)``."""
    result = RowResult(key=row_key)
    for fam, col, versions in cells:
        if family is not None and fam != family:
            continue
        if column is not None and col != column:
            continue
        if versions:
            result.data.setdefault(fam, {})[col] = list(versions)
    return result


def parse_counter(value: str | None, *, column: str) -> int:
    """Read a cell as a 64-bit counter, treating a missing cell as 0."""
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except ValueError as exc:
        raise BackendError(
            f"Cannot increment non-integer cell {column!r}: {value!r}"
        ) from exc
