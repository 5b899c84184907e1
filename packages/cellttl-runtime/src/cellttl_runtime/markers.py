from __future__ import annotations

from typing import TYPE_CHECKING

from cellttl_core.codec import encode
from cellttl_core.keys import encode_marker_key, marker_qualifier
from cellttl_core.logging import get_logger
from cellttl_core.types import now_ms

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from cellttl_core.config import TTLConfig

    from cellttl_runtime.context import TableContext

logger = get_logger("markers")


def expiry_ms(ttl_seconds: float, now: int) -> int:
    return now + round(ttl_seconds * 1000)


class MarkerWriter:
    """Records which primary cells expire when.

    Every TTL-bearing write produces one marker row keyed by its
    (sharded) expiry time, with one column per owning cell holding the
    TTL in seconds. The marker write is not atomic with the primary
    write: callers dispatch both together and accept that one may land
    without the other.
    """

    def __init__(
        self,
        ctx: TableContext,
        config: TTLConfig,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._ctx = ctx
        self._config = config
        self._clock = clock

    def marker_key(self, ttl_seconds: float) -> str:
        return encode_marker_key(
            expiry_ms(ttl_seconds, self._clock()),
            self._config.shard_count,
            self._config.hash_seed,
        )

    async def write(self, row_key: str, columns: Iterable[str], ttl_seconds: float) -> str | None:
        """Write the marker for *columns* of *row_key*; return its row key."""
        if ttl_seconds <= 0:
            raise ValueError(f"TTL must be positive, got {ttl_seconds!r}")
        data = {
            marker_qualifier(self._ctx.family, row_key, column): encode(ttl_seconds)
            for column in columns
        }
        if not data:
            return None
        key = self.marker_key(ttl_seconds)
        await self._ctx.store.put_cells(
            self._ctx.metadata_table, key, self._ctx.metadata_family, data,
        )
        logger.debug("Marker %s written for %s (%d columns)", key, row_key, len(data))
        return key
