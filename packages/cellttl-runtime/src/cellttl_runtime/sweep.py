"""Background sweep that deletes expired cells and their markers.

One cycle scans the marker rows of every shard, keeps the markers whose
``write time + ttl`` has passed and deletes, for each of them, the
owning primary cell and then the marker column. The job reschedules
itself ``interval_ms`` after each cycle completes, whatever the outcome.
The first cycle is delayed by a random jitter so that processes started
together against the same store do not sweep in lockstep.
"""
from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cellttl_core.codec import decode
from cellttl_core.errors import MarkerFormatError
from cellttl_core.keys import decode_owner, shard_prefix
from cellttl_core.logging import get_logger
from cellttl_core.types import Marker, SweepReport, SweepState, now_ms

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from cellttl_core.config import TTLConfig

    from cellttl_runtime.context import TableContext
    from cellttl_runtime.counter import RowCountTracker

logger = get_logger("sweep")


@dataclass(frozen=True, slots=True)
class _Malformed:
    row_key: str
    qualifier: str
    reason: str


class SweepJob:
    """Scheduler and scan-filter-delete loop for TTL markers.

    Lifecycle: ``start()`` arms the first (jittered) timer, ``close()``
    cancels whatever timer is pending. A cycle already running when
    ``close()`` is called runs to completion; ``wait_closed()`` waits
    for it.
    """

    def __init__(
        self,
        ctx: TableContext,
        tracker: RowCountTracker,
        config: TTLConfig,
        *,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        self._ctx = ctx
        self._tracker = tracker
        self._config = config
        self._clock = clock
        self._rng = rng or random.Random()
        self._state = SweepState.IDLE
        self._started = False
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._callbacks: list[Callable[[SweepReport], Awaitable[None]]] = []
        self._cycles = 0

    # ── Public API ──────────────────────────────────────────────────

    @property
    def state(self) -> SweepState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cycles(self) -> int:
        """Number of cycles completed so far, scheduled or manual."""
        return self._cycles

    def start(self) -> None:
        """Arm the first cycle after a random jitter.

        Must be called from a running event loop. Calling it again, or
        after ``close()``, does nothing.
        """
        if self._started or self._closed:
            return
        self._started = True
        self._loop = asyncio.get_running_loop()
        delay = self.jitter_ms()
        logger.info("TTL sweep for %s starting in %d ms", self._ctx.table, delay)
        self._schedule(delay)

    def jitter_ms(self) -> int:
        low, high = self._config.min_jitter_ms, self._config.max_jitter_ms
        if high == 0:
            return 0
        return self._rng.randint(low, high)

    def close(self) -> None:
        """Cancel the pending timer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is None or self._task.done():
            self._state = SweepState.CLOSED
        logger.info("TTL sweep for %s closed", self._ctx.table)

    async def wait_closed(self) -> None:
        """Wait for a cycle that was in flight when the job was closed."""
        if self._task is not None and not self._task.done():
            await self._task

    def subscribe(self, callback: Callable[[SweepReport], Awaitable[None]]) -> None:
        """Register a coroutine called with the report of every cycle."""
        self._callbacks.append(callback)

    async def run_once(self) -> SweepReport:
        """Run one scan-filter-delete cycle and report what it did."""
        started_at = self._clock()
        t0 = time.monotonic()
        try:
            self._state = SweepState.SCANNING
            markers, malformed = await self._scan()

            self._state = SweepState.FILTERING
            now = self._clock()
            expired = [m for m in markers if m.is_expired(now)]

            self._state = SweepState.DELETING
            # One task per owning row: its existence check and counter
            # decrement run once however many of its markers expired.
            by_row: dict[str, list[Marker]] = {}
            for marker in expired:
                by_row.setdefault(marker.owner.row_key, []).append(marker)
            batches: list[list[Marker] | list[_Malformed]] = [
                *by_row.values(), *([m] for m in malformed),
            ]
            results = await asyncio.gather(
                *(self._expire_row(row_key, ms) for row_key, ms in by_row.items()),
                *(self._discard(m) for m in malformed),
                return_exceptions=True,
            )
        finally:
            self._state = SweepState.CLOSED if self._closed else SweepState.IDLE

        failed = 0
        for batch, result in zip(batches, results, strict=True):
            if not isinstance(result, BaseException):
                continue
            failed += len(batch)
            for marker in batch:
                logger.warning(
                    "Failed to remove marker %s / %s: %r",
                    marker.row_key, marker.qualifier, result,
                    extra={"table": self._ctx.table, "row_key": marker.row_key},
                )

        report = SweepReport(
            scanned=len(markers),
            expired=len(expired),
            deleted=len(expired) + len(malformed) - failed,
            failed=failed,
            started_at_ms=started_at,
            duration_ms=(time.monotonic() - t0) * 1000,
        )
        self._cycles += 1
        if report.expired or report.failed:
            logger.info(
                "TTL sweep for %s: %d scanned, %d expired, %d deleted, %d failed",
                self._ctx.table, report.scanned, report.expired, report.deleted, report.failed,
            )
        await self._notify(report)
        return report

    # ── Scheduling ──────────────────────────────────────────────────

    def _schedule(self, delay_ms: int) -> None:
        assert self._loop is not None
        self._timer = self._loop.call_later(delay_ms / 1000, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._closed:
            return
        assert self._loop is not None
        self._task = self._loop.create_task(self._run_scheduled())

    async def _run_scheduled(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("TTL sweep cycle for %s failed", self._ctx.table)
        if not self._closed:
            self._schedule(self._config.interval_ms)

    # ── Cycle steps ─────────────────────────────────────────────────

    async def _scan(self) -> tuple[list[Marker], list[_Malformed]]:
        shards = await asyncio.gather(
            *(self._scan_shard(shard) for shard in range(self._config.shard_count))
        )
        markers: list[Marker] = []
        malformed: list[_Malformed] = []
        for shard_markers, shard_malformed in shards:
            markers.extend(shard_markers)
            malformed.extend(shard_malformed)
        return markers, malformed

    async def _scan_shard(self, shard: int) -> tuple[list[Marker], list[_Malformed]]:
        family = self._ctx.metadata_family
        markers: list[Marker] = []
        malformed: list[_Malformed] = []
        async for row in self._ctx.store.scan(
            self._ctx.metadata_table, prefix=shard_prefix(shard), family=family,
        ):
            for qualifier, versions in row.data.get(family, {}).items():
                cell = versions[0]
                try:
                    owner = decode_owner(qualifier)
                except MarkerFormatError as exc:
                    malformed.append(_Malformed(row.key, qualifier, str(exc)))
                    continue
                ttl = decode(cell.value)
                if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
                    malformed.append(_Malformed(row.key, qualifier, f"bad TTL {cell.value!r}"))
                    continue
                markers.append(Marker(
                    row_key=row.key,
                    qualifier=qualifier,
                    owner=owner,
                    ttl_seconds=ttl,
                    written_at_ms=cell.timestamp_ms,
                ))
        return markers, malformed

    async def _expire_row(self, row_key: str, markers: list[Marker]) -> None:
        """Delete the expired cells of one row, then the markers pointing at them."""
        store = self._ctx.store
        owned = list(dict.fromkeys((m.owner.family, m.owner.column) for m in markers))
        # Markers whose cells are already gone only need removing themselves.
        if await store.row_exists(self._ctx.table, row_key):
            await store.delete_cells(self._ctx.table, row_key, owned)
            await self._tracker.on_row_deleted(row_key)

        by_marker_row: dict[str, list[tuple[str, str]]] = {}
        for marker in markers:
            by_marker_row.setdefault(marker.row_key, []).append(
                (self._ctx.metadata_family, marker.qualifier)
            )
        for marker_row, columns in by_marker_row.items():
            await store.delete_cells(self._ctx.metadata_table, marker_row, columns)
        logger.debug(
            "Expired %s (%d columns)", row_key, len(owned),
            extra={"table": self._ctx.table, "row_key": row_key},
        )

    async def _discard(self, marker: _Malformed) -> None:
        logger.warning(
            "Dropping unreadable marker %s / %s: %s",
            marker.row_key, marker.qualifier, marker.reason,
        )
        await self._ctx.store.delete_cells(
            self._ctx.metadata_table, marker.row_key,
            [(self._ctx.metadata_family, marker.qualifier)],
        )

    async def _notify(self, report: SweepReport) -> None:
        for callback in list(self._callbacks):
            try:
                await callback(report)
            except Exception:
                logger.debug("Sweep callback failed", exc_info=True)
