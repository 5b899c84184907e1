from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellttl_core.config import StoreConfig

    from cellttl_runtime.protocols.column_store import ColumnStoreAdapter


@dataclass(frozen=True, slots=True)
class TableContext:
    """The store plus the names of the primary and metadata tables.

    Shared by the client, the row counter, the marker writer and the
    sweep job so that they all address the same tables.
    """
    store: ColumnStoreAdapter
    table: str
    family: str
    metadata_table: str
    metadata_family: str

    @classmethod
    def from_config(cls, store: ColumnStoreAdapter, config: StoreConfig) -> TableContext:
        return cls(
            store=store,
            table=config.name,
            family=config.column_family,
            metadata_table=config.metadata_name,
            metadata_family=config.metadata_family,
        )
