from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

from cellttl_core.errors import BackendError, RowNotFoundError, TableNotFoundError
from cellttl_core.logging import get_logger
from cellttl_core.types import Cell, FamilyRule, RowResult, now_ms

from cellttl_runtime.backends._common import build_row, parse_counter
from cellttl_runtime.backends.redis._pool import create_pool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Mapping

    from redis.asyncio import Redis

logger = get_logger("backend.redis.column_store")

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _glob_escape(text: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisColumnStore:
    """T2 column store: one Redis hash per row plus a hash of cell timestamps.

    Only the latest version of a cell is kept; ``max_age_seconds`` is
    applied when cells are read.
    """

    def __init__(
        self, client: Redis, *, prefix: str = "cellttl:", clock: Callable[[], int] = now_ms,
    ) -> None:
        self._r = client
        self._prefix = prefix
        self._clock = clock

    @classmethod
    async def create(
        cls, redis_url: str, *, prefix: str = "cellttl:", clock: Callable[[], int] = now_ms,
    ) -> RedisColumnStore:
        client = await create_pool(redis_url)
        return cls(client, prefix=prefix, clock=clock)

    # ── Keys ─────────────────────────────────────────────────────────

    def _tables_key(self) -> str:
        return f"{self._prefix}tables"

    def _table_prefix(self, table: str) -> str:
        return f"{self._prefix}t:{table}:"

    def _families_key(self, table: str) -> str:
        return f"{self._table_prefix(table)}families"

    def _row_prefix(self, table: str) -> str:
        return f"{self._table_prefix(table)}r:"

    def _row_key(self, table: str, row_key: str) -> str:
        return self._row_prefix(table) + row_key

    def _ts_key(self, table: str, row_key: str) -> str:
        return f"{self._table_prefix(table)}ts:{row_key}"

    @staticmethod
    def _field(family: str, column: str) -> str:
        return f"{family}:{column}"

    # ── Internals ────────────────────────────────────────────────────

    async def _require_table(self, table: str) -> None:
        if not await self.table_exists(table):
            raise TableNotFoundError(f"Unknown table: {table!r}")

    async def _rules(self, table: str) -> dict[str, FamilyRule]:
        raw = await self._r.hgetall(self._families_key(table))
        return {family: FamilyRule(**json.loads(rule_json)) for family, rule_json in raw.items()}

    async def _rule(self, table: str, family: str) -> FamilyRule:
        await self._require_table(table)
        rule_json = await self._r.hget(self._families_key(table), family)
        if rule_json is None:
            raise TableNotFoundError(f"Unknown column family {family!r} in {table!r}")
        return FamilyRule(**json.loads(rule_json))

    async def _live_cells(self, table: str, row_key: str) -> list[tuple[str, str, list[Cell]]]:
        values = await self._r.hgetall(self._row_key(table, row_key))
        if not values:
            return []
        stamps = await self._r.hgetall(self._ts_key(table, row_key))
        rules = await self._rules(table)
        now = self._clock()
        cells = []
        for field in sorted(values):
            family, _, column = field.partition(":")
            cell = Cell(value=values[field], timestamp_ms=int(stamps.get(field, 0)))
            if rules.get(family, FamilyRule()).is_live(cell, now):
                cells.append((family, column, [cell]))
        return cells

    # ── Tables and families ──────────────────────────────────────────

    async def table_exists(self, table: str) -> bool:
        return bool(await self._r.sismember(self._tables_key(), table))

    async def create_table(self, table: str) -> None:
        await self._r.sadd(self._tables_key(), table)

    async def delete_table(self, table: str) -> None:
        pattern = _glob_escape(self._table_prefix(table)) + "*"
        async for key in self._r.scan_iter(match=pattern, count=100):
            await self._r.delete(key)
        await self._r.srem(self._tables_key(), table)

    async def family_exists(self, table: str, family: str) -> bool:
        await self._require_table(table)
        return bool(await self._r.hexists(self._families_key(table), family))

    async def create_family(self, table: str, family: str, rule: FamilyRule) -> None:
        await self._require_table(table)
        rule_json = json.dumps({
            "max_versions": rule.max_versions,
            "max_age_seconds": rule.max_age_seconds,
        })
        await self._r.hset(self._families_key(table), family, rule_json)

    # ── Rows ─────────────────────────────────────────────────────────

    async def row_exists(self, table: str, row_key: str) -> bool:
        await self._require_table(table)
        return bool(await self._live_cells(table, row_key))

    async def get_row(
        self, table: str, row_key: str, *, family: str | None = None, column: str | None = None,
    ) -> RowResult:
        await self._require_table(table)
        cells = await self._live_cells(table, row_key)
        if not cells:
            raise RowNotFoundError(table, row_key)
        return build_row(row_key, cells, family=family, column=column)

    async def put_cells(self, table: str, row_key: str, family: str, cells: Mapping[str, str]) -> None:
        await self._rule(table, family)
        if not cells:
            return
        ts = self._clock()
        fields = {self._field(family, c): str(v) for c, v in cells.items()}
        async with self._r.pipeline(transaction=True) as pipe:
            pipe.hset(self._row_key(table, row_key), mapping=fields)
            pipe.hset(self._ts_key(table, row_key), mapping={f: ts for f in fields})
            await pipe.execute()

    async def increment_cell(self, table: str, row_key: str, family: str, column: str, delta: int) -> int:
        result = await self.increment_cells(table, row_key, family, {column: delta})
        return result[column]

    async def increment_cells(
        self, table: str, row_key: str, family: str, deltas: Mapping[str, int],
    ) -> dict[str, int]:
        from redis.exceptions import ResponseError

        rule = await self._rule(table, family)
        columns = list(deltas)
        if not columns:
            return {}
        fields = [self._field(family, c) for c in columns]
        rk, tk = self._row_key(table, row_key), self._ts_key(table, row_key)
        now = self._clock()
        values = await self._r.hmget(rk, fields)
        stamps = await self._r.hmget(tk, fields)
        # Cells that aged out or hold "" restart from zero; anything else
        # must already be an integer before a command is queued.
        restart = []
        for field, column, value, stamp in zip(fields, columns, values, stamps, strict=True):
            aged_out = stamp is not None and not rule.is_live(Cell("", int(stamp)), now)
            if aged_out or value == "":
                restart.append(field)
            else:
                parse_counter(value, column=column)
        async with self._r.pipeline(transaction=True) as pipe:
            if restart:
                pipe.hdel(rk, *restart)
            first = len(pipe.command_stack)
            for field, column in zip(fields, columns, strict=True):
                pipe.hincrby(rk, field, deltas[column])
            pipe.hset(tk, mapping={f: now for f in fields})
            try:
                results = await pipe.execute()
            except ResponseError as exc:
                raise BackendError(f"Cannot increment {columns!r} of {row_key!r}: {exc}") from exc
        return {
            column: int(results[first + i]) for i, column in enumerate(columns)
        }

    async def delete_cells(self, table: str, row_key: str, columns: Iterable[tuple[str, str]]) -> None:
        await self._require_table(table)
        fields = [self._field(family, column) for family, column in columns]
        if not fields:
            return
        async with self._r.pipeline(transaction=True) as pipe:
            pipe.hdel(self._row_key(table, row_key), *fields)
            pipe.hdel(self._ts_key(table, row_key), *fields)
            await pipe.execute()

    async def delete_row(self, table: str, row_key: str) -> None:
        await self._require_table(table)
        await self._r.delete(self._row_key(table, row_key), self._ts_key(table, row_key))

    async def scan(
        self, table: str, *, prefix: str | None = None, family: str | None = None,
    ) -> AsyncIterator[RowResult]:
        await self._require_table(table)
        base = self._row_prefix(table)
        pattern = _glob_escape(base + (prefix or "")) + "*"
        # SCAN may return a key more than once.
        keys = {key async for key in self._r.scan_iter(match=pattern, count=100)}
        for key in sorted(keys):
            row_key = key[len(base):]
            row = build_row(row_key, await self._live_cells(table, row_key), family=family)
            if row.data:
                yield row

    async def close(self) -> None:
        await self._r.aclose()
