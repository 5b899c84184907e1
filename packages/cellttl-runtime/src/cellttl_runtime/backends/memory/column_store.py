from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cellttl_core.errors import RowNotFoundError, TableNotFoundError
from cellttl_core.types import Cell, FamilyRule, RowResult, now_ms

from cellttl_runtime.backends._common import build_row, parse_counter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Mapping

_CellMap = dict[tuple[str, str], list[Cell]]


@dataclass(slots=True)
class _Table:
    families: dict[str, FamilyRule] = field(default_factory=dict)
    rows: dict[str, _CellMap] = field(default_factory=dict)


class InProcessColumnStore:
    """T0 column store: nested dicts, versions kept newest-first."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._tables: dict[str, _Table] = {}
        self._clock = clock

    def _table(self, table: str) -> _Table:
        t = self._tables.get(table)
        if t is None:
            raise TableNotFoundError(f"Unknown table: {table!r}")
        return t

    def _rule(self, t: _Table, table: str, family: str) -> FamilyRule:
        rule = t.families.get(family)
        if rule is None:
            raise TableNotFoundError(f"Unknown column family {family!r} in {table!r}")
        return rule

    def _live(self, t: _Table, row_key: str) -> _CellMap:
        """Drop aged-out versions and return what is left of the row."""
        cells = t.rows.get(row_key)
        if not cells:
            t.rows.pop(row_key, None)
            return {}
        now = self._clock()
        for key in list(cells):
            rule = t.families.get(key[0], FamilyRule())
            versions = [c for c in cells[key] if rule.is_live(c, now)]
            if versions:
                cells[key] = versions
            else:
                del cells[key]
        if not cells:
            del t.rows[row_key]
        return cells

    async def table_exists(self, table: str) -> bool:
        return table in self._tables

    async def create_table(self, table: str) -> None:
        self._tables.setdefault(table, _Table())

    async def delete_table(self, table: str) -> None:
        self._tables.pop(table, None)

    async def family_exists(self, table: str, family: str) -> bool:
        return family in self._table(table).families

    async def create_family(self, table: str, family: str, rule: FamilyRule) -> None:
        self._table(table).families[family] = rule

    async def row_exists(self, table: str, row_key: str) -> bool:
        return bool(self._live(self._table(table), row_key))

    async def get_row(
        self, table: str, row_key: str, *, family: str | None = None, column: str | None = None,
    ) -> RowResult:
        cells = self._live(self._table(table), row_key)
        if not cells:
            raise RowNotFoundError(table, row_key)
        return build_row(
            row_key,
            ((fam, col, versions) for (fam, col), versions in cells.items()),
            family=family,
            column=column,
        )

    async def put_cells(self, table: str, row_key: str, family: str, cells: Mapping[str, str]) -> None:
        t = self._table(table)
        rule = self._rule(t, table, family)
        if not cells:
            return
        ts = self._clock()
        row = t.rows.setdefault(row_key, {})
        for column, value in cells.items():
            versions = row.setdefault((family, column), [])
            versions.insert(0, Cell(value=str(value), timestamp_ms=ts))
            del versions[rule.max_versions:]

    async def increment_cell(self, table: str, row_key: str, family: str, column: str, delta: int) -> int:
        result = await self.increment_cells(table, row_key, family, {column: delta})
        return result[column]

    async def increment_cells(
        self, table: str, row_key: str, family: str, deltas: Mapping[str, int],
    ) -> dict[str, int]:
        t = self._table(table)
        self._rule(t, table, family)
        cells = self._live(t, row_key)
        totals: dict[str, int] = {}
        for column, delta in deltas.items():
            versions = cells.get((family, column))
            current = parse_counter(versions[0].value if versions else None, column=column)
            totals[column] = current + delta
        await self.put_cells(table, row_key, family, {c: str(v) for c, v in totals.items()})
        return totals

    async def delete_cells(self, table: str, row_key: str, columns: Iterable[tuple[str, str]]) -> None:
        t = self._table(table)
        row = t.rows.get(row_key)
        if row is None:
            return
        for key in columns:
            row.pop(key, None)
        if not row:
            del t.rows[row_key]

    async def delete_row(self, table: str, row_key: str) -> None:
        self._table(table).rows.pop(row_key, None)

    async def scan(
        self, table: str, *, prefix: str | None = None, family: str | None = None,
    ) -> AsyncIterator[RowResult]:
        t = self._table(table)
        for row_key in sorted(t.rows):
            if prefix and not row_key.startswith(prefix):
                continue
            cells = self._live(t, row_key)
            row = build_row(
                row_key,
                ((fam, col, versions) for (fam, col), versions in cells.items()),
                family=family,
            )
            if row.data:
                yield row

    async def close(self) -> None:
        return None
