from __future__ import annotations

import asyncio
from itertools import groupby
from typing import TYPE_CHECKING

from cellttl_core.errors import RowNotFoundError, TableNotFoundError
from cellttl_core.logging import get_logger
from cellttl_core.types import Cell, FamilyRule, RowResult, now_ms

from cellttl_runtime.backends._common import build_row, parse_counter
from cellttl_runtime.backends.sqlite._db import get_connection

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Mapping

    import aiosqlite

logger = get_logger("backend.sqlite.column_store")

_CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cell_tables (
    name TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS cell_families (
    tbl TEXT NOT NULL,
    family TEXT NOT NULL,
    max_versions INTEGER NOT NULL DEFAULT 1,
    max_age_seconds INTEGER,
    PRIMARY KEY (tbl, family)
);
CREATE TABLE IF NOT EXISTS cells (
    tbl TEXT NOT NULL,
    row_key TEXT NOT NULL,
    family TEXT NOT NULL,
    col TEXT NOT NULL,
    value TEXT NOT NULL,
    ts INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cells_row ON cells (tbl, row_key, family, col, ts);
"""

# Cells of a table that have not aged out under their family rule.
_LIVE_CELLS = """
SELECT c.row_key, c.family, c.col, c.value, c.ts
FROM cells c
LEFT JOIN cell_families f ON f.tbl = c.tbl AND f.family = c.family
WHERE c.tbl = ?
  AND (f.max_age_seconds IS NULL OR c.ts + f.max_age_seconds * 1000 > ?)
"""

_ORDER = " ORDER BY c.row_key, c.family, c.col, c.ts DESC, c.rowid DESC"

_TRIM_VERSIONS = """
DELETE FROM cells
WHERE tbl = ? AND row_key = ? AND family = ? AND col = ?
  AND rowid NOT IN (
      SELECT rowid FROM cells
      WHERE tbl = ? AND row_key = ? AND family = ? AND col = ?
      ORDER BY ts DESC, rowid DESC
      LIMIT ?
  )
"""


def _group_cells(rows: Iterable[aiosqlite.Row]) -> list[tuple[str, str, list[Cell]]]:
    grouped = []
    for (fam, col), items in groupby(rows, key=lambda r: (r["family"], r["col"])):
        grouped.append(
            (fam, col, [Cell(value=r["value"], timestamp_ms=r["ts"]) for r in items])
        )
    return grouped


class SQLiteColumnStore:
    """T1 column store: one SQLite table of versioned cells."""

    def __init__(self, conn: aiosqlite.Connection, clock: Callable[[], int] = now_ms) -> None:
        self._conn = conn
        self._clock = clock
        self._write_lock = asyncio.Lock()

    @classmethod
    async def create(cls, db_path: str, clock: Callable[[], int] = now_ms) -> SQLiteColumnStore:
        conn = await get_connection(db_path)
        await conn.executescript(_CREATE_SCHEMA)
        await conn.commit()
        logger.info("Opened SQLite column store at %s", db_path)
        return cls(conn, clock)

    async def _require_table(self, table: str) -> None:
        if not await self.table_exists(table):
            raise TableNotFoundError(f"Unknown table: {table!r}")

    async def _rule(self, table: str, family: str) -> FamilyRule:
        async with self._conn.execute(
            "SELECT max_versions, max_age_seconds FROM cell_families WHERE tbl = ? AND family = ?",
            (table, family),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            await self._require_table(table)
            raise TableNotFoundError(f"Unknown column family {family!r} in {table!r}")
        return FamilyRule(max_versions=row[0], max_age_seconds=row[1])

    async def _live_rows(
        self, table: str, clause: str, params: tuple,
    ) -> list[aiosqlite.Row]:
        async with self._conn.execute(
            _LIVE_CELLS + clause + _ORDER, (table, self._clock(), *params),
        ) as cursor:
            return list(await cursor.fetchall())

    async def table_exists(self, table: str) -> bool:
        async with self._conn.execute(
            "SELECT 1 FROM cell_tables WHERE name = ?", (table,)
        ) as cursor:
            return (await cursor.fetchone()) is not None

    async def create_table(self, table: str) -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO cell_tables (name) VALUES (?)", (table,)
        )
        await self._conn.commit()

    async def delete_table(self, table: str) -> None:
        async with self._write_lock:
            await self._conn.execute("DELETE FROM cells WHERE tbl = ?", (table,))
            await self._conn.execute("DELETE FROM cell_families WHERE tbl = ?", (table,))
            await self._conn.execute("DELETE FROM cell_tables WHERE name = ?", (table,))
            await self._conn.commit()

    async def family_exists(self, table: str, family: str) -> bool:
        await self._require_table(table)
        async with self._conn.execute(
            "SELECT 1 FROM cell_families WHERE tbl = ? AND family = ?", (table, family)
        ) as cursor:
            return (await cursor.fetchone()) is not None

    async def create_family(self, table: str, family: str, rule: FamilyRule) -> None:
        await self._require_table(table)
        await self._conn.execute(
            """INSERT INTO cell_families (tbl, family, max_versions, max_age_seconds)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(tbl, family) DO UPDATE SET
                   max_versions = excluded.max_versions,
                   max_age_seconds = excluded.max_age_seconds""",
            (table, family, rule.max_versions, rule.max_age_seconds),
        )
        await self._conn.commit()

    async def row_exists(self, table: str, row_key: str) -> bool:
        await self._require_table(table)
        rows = await self._live_rows(table, " AND c.row_key = ?", (row_key,))
        return bool(rows)

    async def get_row(
        self, table: str, row_key: str, *, family: str | None = None, column: str | None = None,
    ) -> RowResult:
        await self._require_table(table)
        rows = await self._live_rows(table, " AND c.row_key = ?", (row_key,))
        if not rows:
            raise RowNotFoundError(table, row_key)
        return build_row(row_key, _group_cells(rows), family=family, column=column)

    async def _insert(
        self, table: str, row_key: str, family: str, cells: Mapping[str, str], rule: FamilyRule,
    ) -> None:
        ts = self._clock()
        for column, value in cells.items():
            await self._conn.execute(
                "INSERT INTO cells (tbl, row_key, family, col, value, ts) VALUES (?, ?, ?, ?, ?, ?)",
                (table, row_key, family, column, str(value), ts),
            )
            key = (table, row_key, family, column)
            await self._conn.execute(_TRIM_VERSIONS, (*key, *key, rule.max_versions))

    async def put_cells(self, table: str, row_key: str, family: str, cells: Mapping[str, str]) -> None:
        rule = await self._rule(table, family)
        if not cells:
            return
        async with self._write_lock:
            await self._insert(table, row_key, family, cells, rule)
            await self._conn.commit()

    async def increment_cell(self, table: str, row_key: str, family: str, column: str, delta: int) -> int:
        result = await self.increment_cells(table, row_key, family, {column: delta})
        return result[column]

    async def increment_cells(
        self, table: str, row_key: str, family: str, deltas: Mapping[str, int],
    ) -> dict[str, int]:
        rule = await self._rule(table, family)
        async with self._write_lock:
            rows = await self._live_rows(
                table, " AND c.row_key = ? AND c.family = ?", (row_key, family),
            )
            latest: dict[str, str] = {}
            for r in rows:
                latest.setdefault(r["col"], r["value"])
            totals = {
                column: parse_counter(latest.get(column), column=column) + delta
                for column, delta in deltas.items()
            }
            await self._insert(
                table, row_key, family, {c: str(v) for c, v in totals.items()}, rule,
            )
            await self._conn.commit()
        return totals

    async def delete_cells(self, table: str, row_key: str, columns: Iterable[tuple[str, str]]) -> None:
        await self._require_table(table)
        async with self._write_lock:
            for family, column in columns:
                await self._conn.execute(
                    "DELETE FROM cells WHERE tbl = ? AND row_key = ? AND family = ? AND col = ?",
                    (table, row_key, family, column),
                )
            await self._conn.commit()

    async def delete_row(self, table: str, row_key: str) -> None:
        await self._require_table(table)
        async with self._write_lock:
            await self._conn.execute(
                "DELETE FROM cells WHERE tbl = ? AND row_key = ?", (table, row_key)
            )
            await self._conn.commit()

    async def scan(
        self, table: str, *, prefix: str | None = None, family: str | None = None,
    ) -> AsyncIterator[RowResult]:
        await self._require_table(table)
        clause, params = "", ()
        if prefix:
            clause, params = " AND substr(c.row_key, 1, ?) = ?", (len(prefix), prefix)
        current: str | None = None
        pending: list[aiosqlite.Row] = []
        async with self._conn.execute(
            _LIVE_CELLS + clause + _ORDER, (table, self._clock(), *params),
        ) as cursor:
            async for r in cursor:
                if r["row_key"] != current and pending:
                    row = build_row(current, _group_cells(pending), family=family)
                    if row.data:
                        yield row
                    pending = []
                current = r["row_key"]
                pending.append(r)
        if pending:
            row = build_row(current, _group_cells(pending), family=family)
            if row.data:
                yield row

    async def close(self) -> None:
        await self._conn.close()
