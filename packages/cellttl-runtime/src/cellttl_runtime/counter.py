from __future__ import annotations

from typing import TYPE_CHECKING

from cellttl_core.codec import decode
from cellttl_core.errors import RowNotFoundError
from cellttl_core.logging import get_logger

if TYPE_CHECKING:
    from cellttl_runtime.context import TableContext

logger = get_logger("counter")

COUNTS = "counts"


class RowCountTracker:
    """Advisory count of live rows in the primary table.

    The count lives in a single cell (row ``counts``, column ``counts``)
    of the metadata table. Increments are gated on an existence check
    made before the write, decrements on the row having vanished after a
    delete. Neither check is atomic with the mutation it accompanies, so
    two writers creating the same row at once both increment and the
    count drifts. That drift is accepted: the counter is never used for
    anything but reporting.
    """

    def __init__(self, ctx: TableContext) -> None:
        self._ctx = ctx

    async def is_new(self, row_key: str) -> bool:
        """Whether *row_key* is absent from the primary table right now."""
        return not await self._ctx.store.row_exists(self._ctx.table, row_key)

    async def increment(self) -> int:
        return await self._add(1)

    async def decrement(self) -> int:
        return await self._add(-1)

    async def _add(self, delta: int) -> int:
        total = await self._ctx.store.increment_cell(
            self._ctx.metadata_table, COUNTS, self._ctx.metadata_family, COUNTS, delta,
        )
        logger.debug("Row count for %s now %d", self._ctx.table, total)
        return total

    async def on_row_deleted(self, row_key: str, *, existed: bool = True) -> bool:
        """Decrement once the row has actually gone; return whether it did."""
        if not existed:
            return False
        if await self._ctx.store.row_exists(self._ctx.table, row_key):
            return False
        await self.decrement()
        return True

    async def count(self) -> int:
        try:
            row = await self._ctx.store.get_row(
                self._ctx.metadata_table, COUNTS,
                family=self._ctx.metadata_family, column=COUNTS,
            )
        except RowNotFoundError:
            return 0
        cell = row.latest(self._ctx.metadata_family, COUNTS)
        if cell is None:
            return 0
        value = decode(cell.value)
        return value if isinstance(value, int) else 0
