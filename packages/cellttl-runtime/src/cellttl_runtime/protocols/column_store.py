from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

    from cellttl_core.types import FamilyRule, RowResult


@runtime_checkable
class ColumnStoreAdapter(Protocol):
    """Column-family store: tables of rows holding ``family:column`` cells.

    A row exists while it holds at least one live cell. Single-row
    mutations are atomic; nothing spanning rows is.
    """

    async def table_exists(self, table: str) -> bool: ...
    async def create_table(self, table: str) -> None: ...
    async def delete_table(self, table: str) -> None: ...
    async def family_exists(self, table: str, family: str) -> bool: ...
    async def create_family(self, table: str, family: str, rule: FamilyRule) -> None: ...
    async def row_exists(self, table: str, row_key: str) -> bool: ...
    async def get_row(
        self, table: str, row_key: str, *, family: str | None = None, column: str | None = None,
    ) -> RowResult: ...
    async def put_cells(self, table: str, row_key: str, family: str, cells: Mapping[str, str]) -> None: ...
    async def increment_cell(self, table: str, row_key: str, family: str, column: str, delta: int) -> int: ...
    async def increment_cells(
        self, table: str, row_key: str, family: str, deltas: Mapping[str, int],
    ) -> dict[str, int]: ...
    async def delete_cells(self, table: str, row_key: str, columns: Iterable[tuple[str, str]]) -> None: ...
    async def delete_row(self, table: str, row_key: str) -> None: ...
    def scan(
        self, table: str, *, prefix: str | None = None, family: str | None = None,
    ) -> AsyncIterator[RowResult]: ...
    async def close(self) -> None: ...
