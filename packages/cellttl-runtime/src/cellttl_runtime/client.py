from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from cellttl_core.codec import decode, encode
from cellttl_core.config import CellTTLConfig
from cellttl_core.errors import PartialWriteError, RowNotFoundError
from cellttl_core.logging import get_logger
from cellttl_core.types import Cell, FamilyRule, RowResult, now_ms

from cellttl_runtime.builder import StoreBuilder
from cellttl_runtime.context import TableContext
from cellttl_runtime.counter import RowCountTracker
from cellttl_runtime.markers import MarkerWriter
from cellttl_runtime.sweep import SweepJob

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable, Callable, Mapping

    from cellttl_runtime.protocols.column_store import ColumnStoreAdapter

logger = get_logger("client")


def _check_ttl(ttl: float | None) -> None:
    if ttl is not None and ttl < 0:
        raise ValueError(f"TTL must not be negative, got {ttl!r}")


def _is_counter_delta(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value != 0


class CellTTLClient:
    """Key-value access to a column-family table with per-cell TTL.

    Writes that carry a TTL (in seconds) also record a marker in the
    ``<name>_metadata`` table; a background :class:`SweepJob` deletes the
    cells whose markers have expired. A TTL of ``None`` or ``0`` means
    the cell never expires.

    Usage:
        client = await CellTTLClient.create(CellTTLConfig.load())
        await client.init()
        await client.set("user:1", "alice", ttl=5, column="name")
        ...
        await client.close()
    """

    def __init__(
        self,
        store: ColumnStoreAdapter,
        config: CellTTLConfig | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
        owns_store: bool = False,
    ) -> None:
        self._store = store
        self._config = config or CellTTLConfig()
        self._owns_store = owns_store
        self._ctx = TableContext.from_config(store, self._config.store)
        self._tracker = RowCountTracker(self._ctx)
        self._markers = MarkerWriter(self._ctx, self._config.ttl, clock=clock)
        self._job = SweepJob(
            self._ctx, self._tracker, self._config.ttl, clock=clock, rng=rng,
        )
        self._initialized = False

    @classmethod
    async def create(
        cls,
        config: CellTTLConfig | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> CellTTLClient:
        """Build the configured backend and a client that owns it."""
        config = config or CellTTLConfig()
        store = await StoreBuilder(config, clock=clock).build()
        return cls(store, config, clock=clock, rng=rng, owns_store=True)

    @property
    def job(self) -> SweepJob:
        return self._job

    @property
    def table(self) -> str:
        return self._ctx.table

    @property
    def metadata_table(self) -> str:
        return self._ctx.metadata_table

    @property
    def default_column(self) -> str:
        return self._config.store.default_column

    # ── Lifecycle ───────────────────────────────────────────────────

    async def init(self) -> None:
        """Create missing tables and families, then start the sweep job."""
        if self._initialized:
            return

        logger.info("Initialising %s", self._ctx.table)
        store_cfg = self._config.store
        rule = FamilyRule(
            max_versions=store_cfg.max_versions,
            max_age_seconds=store_cfg.max_age_seconds,
        )
        await self._ensure_family(self._ctx.table, self._ctx.family, rule)
        # Markers and the row counter must outlive any max age.
        await self._ensure_family(
            self._ctx.metadata_table,
            self._ctx.metadata_family,
            FamilyRule(max_versions=store_cfg.max_versions),
        )

        self._initialized = True
        self._job.start()
        logger.info("Initialised %s", self._ctx.table)

    async def _ensure_family(self, table: str, family: str, rule: FamilyRule) -> None:
        if not await self._store.table_exists(table):
            await self._store.create_table(table)
        if not await self._store.family_exists(table, family):
            await self._store.create_family(table, family, rule)

    async def close(self) -> None:
        """Stop the sweep job, letting an in-flight cycle finish."""
        logger.info("Closing %s", self._ctx.table)
        self._job.close()
        await self._job.wait_closed()
        if self._owns_store:
            await self._store.close()
            self._owns_store = False

    async def clean_up(self) -> None:
        """Drop the primary and the metadata table."""
        logger.info("Cleaning up, deleting %s and %s", self._ctx.table, self._ctx.metadata_table)
        await self._dispatch(
            self._store.delete_table(self._ctx.table),
            self._store.delete_table(self._ctx.metadata_table),
        )

    # ── Generic retrieve / insert ───────────────────────────────────

    async def retrieve(
        self,
        table: str,
        family: str,
        row_key: str,
        column: str | None = None,
        complete: bool = False,
    ) -> Any:
        """Read one cell or one row.

        With *column*, return that cell's decoded value (or the raw
        :class:`Cell` when *complete*). Without, return a mapping of
        every column of *family* to its value. A missing row yields
        ``None``; other store errors propagate.
        """
        if not table or not row_key:
            return None
        try:
            row = await self._store.get_row(table, row_key, family=family, column=column)
        except RowNotFoundError:
            return None

        if column is not None:
            cell = row.latest(family, column)
            if cell is None:
                return None
            return cell if complete else decode(cell.value)

        return {
            col: versions[0] if complete else decode(versions[0].value)
            for col, versions in row.data.get(family, {}).items()
        }

    async def insert(
        self, table: str, family: str, row_key: str, data: Mapping[str, Any] | None,
    ) -> None:
        """Encode every value of *data* and write them as one row mutation."""
        if not table or not row_key or not data:
            return
        cells = {column: encode(value) for column, value in data.items()}
        await self._store.put_cells(table, row_key, family, cells)

    async def _dispatch(self, *writes: Awaitable[Any]) -> list[Any]:
        """Run sub-writes concurrently; fail if any of them failed."""
        results = await asyncio.gather(*writes, return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if not errors:
            return results
        if len(errors) == len(results):
            raise errors[0]
        raise PartialWriteError(errors, len(results) - len(errors)) from errors[0]

    # ── Cells ───────────────────────────────────────────────────────

    async def set(
        self, row_key: str, value: Any, ttl: float | None = None, column: str | None = None,
    ) -> None:
        """Write one cell, optionally expiring after *ttl* seconds."""
        if not row_key:
            return
        _check_ttl(ttl)
        column = column or self.default_column
        logger.debug("Setting %s:%s (ttl=%s)", row_key, column, ttl)
        await self._write_cells(row_key, {column: value}, ttl)

    async def multi_set(
        self, row_key: str, columns: Mapping[str, Any], ttl: float | None = None,
    ) -> None:
        """Write several cells of one row in a single mutation."""
        if not row_key or not columns:
            return
        _check_ttl(ttl)
        logger.debug("Multi-setting %s (%d columns, ttl=%s)", row_key, len(columns), ttl)
        await self._write_cells(row_key, columns, ttl)

    async def _write_cells(
        self, row_key: str, columns: Mapping[str, Any], ttl: float | None,
    ) -> None:
        is_new = await self._tracker.is_new(row_key)
        writes = [self.insert(self._ctx.table, self._ctx.family, row_key, columns)]
        if ttl:
            writes.append(self._markers.write(row_key, list(columns), ttl))
        if is_new:
            writes.append(self._tracker.increment())
        await self._dispatch(*writes)

    async def get(self, row_key: str, column: str | None = None) -> Any:
        if not row_key:
            return None
        column = column or self.default_column
        logger.debug("Getting %s:%s", row_key, column)
        return await self.retrieve(self._ctx.table, self._ctx.family, row_key, column)

    async def delete(self, row_key: str, column: str | None = None) -> None:
        """Delete one cell; the row counter drops if that emptied the row."""
        if not row_key:
            return
        column = column or self.default_column
        logger.debug("Deleting %s:%s", row_key, column)
        existed = not await self._tracker.is_new(row_key)
        await self._store.delete_cells(self._ctx.table, row_key, [(self._ctx.family, column)])
        await self._tracker.on_row_deleted(row_key, existed=existed)

    # ── Counters ────────────────────────────────────────────────────

    async def multi_add(
        self, row_key: str, deltas: Mapping[str, Any], ttl: float | None = None,
    ) -> dict[str, int] | None:
        """Add integer deltas to several columns of one row.

        Non-integer and zero deltas are skipped. Returns the new totals,
        or ``None`` when there was nothing to add.
        """
        if not row_key or not deltas:
            return None
        _check_ttl(ttl)
        increments = {c: v for c, v in deltas.items() if _is_counter_delta(v)}
        if not increments:
            return None
        logger.debug("Multi-adding %s %s (ttl=%s)", row_key, increments, ttl)
        results = await self._add(row_key, increments, ttl)
        return results[0]

    async def increase(
        self, row_key: str, column: str | None = None, ttl: float | None = None,
    ) -> int | None:
        """Add one to an integer cell and return the new value."""
        return await self._bump(row_key, column, 1, ttl)

    async def decrease(
        self, row_key: str, column: str | None = None, ttl: float | None = None,
    ) -> int | None:
        """Subtract one from an integer cell and return the new value."""
        return await self._bump(row_key, column, -1, ttl)

    async def _bump(
        self, row_key: str, column: str | None, delta: int, ttl: float | None,
    ) -> int | None:
        if not row_key:
            return None
        _check_ttl(ttl)
        column = column or self.default_column
        logger.debug("Adding %d to %s:%s (ttl=%s)", delta, row_key, column, ttl)
        results = await self._add(row_key, {column: delta}, ttl)
        return results[0][column]

    async def _add(
        self, row_key: str, increments: dict[str, int], ttl: float | None,
    ) -> list[Any]:
        is_new = await self._tracker.is_new(row_key)
        writes = [
            self._store.increment_cells(self._ctx.table, row_key, self._ctx.family, increments),
        ]
        if ttl:
            writes.append(self._markers.write(row_key, list(increments), ttl))
        if is_new:
            writes.append(self._tracker.increment())
        return await self._dispatch(*writes)

    # ── Rows ────────────────────────────────────────────────────────

    async def get_row(self, row_key: str) -> dict[str, Any] | None:
        """Return every column of *row_key*, or ``None`` if it does not exist."""
        if not row_key:
            return None
        logger.debug("Getting row %s", row_key)
        return await self.retrieve(self._ctx.table, self._ctx.family, row_key)

    async def delete_row(self, row_key: str) -> None:
        if not row_key:
            return
        logger.debug("Deleting row %s", row_key)
        existed = not await self._tracker.is_new(row_key)
        await self._store.delete_row(self._ctx.table, row_key)
        await self._tracker.on_row_deleted(row_key, existed=existed)

    async def count(self) -> int:
        """Approximate number of live rows in the primary table."""
        return await self._tracker.count()

    async def scan_cells(
        self,
        prefix: str | None = None,
        etl: Callable[[RowResult], Any] | None = None,
    ) -> list[Any]:
        """Scan the primary table, optionally transforming each row.

        Rows for which *etl* returns a falsy value are dropped.
        """
        logger.debug("Scanning %s (prefix=%r)", self._ctx.table, prefix)
        results = []
        async for row in self._store.scan(self._ctx.table, prefix=prefix, family=self._ctx.family):
            item = etl(row) if etl is not None else row
            if item:
                results.append(item)
        return results

    async def get_cell(self, row_key: str, column: str | None = None) -> Cell | None:
        """Return the raw latest :class:`Cell`, including its timestamp."""
        if not row_key:
            return None
        column = column or self.default_column
        return await self.retrieve(self._ctx.table, self._ctx.family, row_key, column, complete=True)
