from __future__ import annotations

from typing import TYPE_CHECKING

from cellttl_core.logging import get_logger
from cellttl_core.types import now_ms

if TYPE_CHECKING:
    from collections.abc import Callable

    from cellttl_core.config import CellTTLConfig

    from cellttl_runtime.protocols.column_store import ColumnStoreAdapter

logger = get_logger("builder")


class StoreBuilder:
    """Build a column store backend from configuration.

    Usage:
        config = CellTTLConfig.from_toml("cellttl.toml")
        store = await StoreBuilder(config).build()
    """

    def __init__(self, config: CellTTLConfig, *, clock: Callable[[], int] = now_ms) -> None:
        self._config = config
        self._clock = clock

    async def build(self) -> ColumnStoreAdapter:
        tier = self._config.backend.tier
        logger.info("Building column store with %s backend", tier)

        if tier == "memory":
            return self._build_memory()
        elif tier == "sqlite":
            return await self._build_sqlite()
        elif tier == "redis":
            return await self._build_redis()
        else:
            raise ValueError(f"Unknown backend tier: {tier!r}")

    def _build_memory(self) -> ColumnStoreAdapter:
        from cellttl_runtime.backends.memory import InProcessColumnStore
        return InProcessColumnStore(clock=self._clock)

    async def _build_sqlite(self) -> ColumnStoreAdapter:
        from cellttl_runtime.backends.sqlite import SQLiteColumnStore
        return await SQLiteColumnStore.create(
            self._config.backend.sqlite_path, clock=self._clock,
        )

    async def _build_redis(self) -> ColumnStoreAdapter:
        from cellttl_runtime.backends.redis import RedisColumnStore
        return await RedisColumnStore.create(
            self._config.backend.redis_url,
            prefix=self._config.backend.redis_prefix,
            clock=self._clock,
        )
