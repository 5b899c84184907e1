from __future__ import annotations

import contextlib
import random
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from cellttl_core.config import CellTTLConfig, StoreConfig, TTLConfig
from cellttl_core.types import FamilyRule

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


def make_config(
    *,
    name: str = "test",
    interval_ms: int = 60_000,
    min_jitter_ms: int = 600_000,
    max_jitter_ms: int = 600_000,
    shard_count: int = 3,
    max_age_seconds: int | None = None,
) -> CellTTLConfig:
    """Config whose scheduled sweep never fires during a test by default."""
    return CellTTLConfig(
        store=StoreConfig(name=name, max_age_seconds=max_age_seconds),
        ttl=TTLConfig(
            interval_ms=interval_ms,
            min_jitter_ms=min_jitter_ms,
            max_jitter_ms=max_jitter_ms,
            shard_count=shard_count,
        ),
    )


# ---------------------------------------------------------------------------
# T0 in-process fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def memory_column_store(clock):
    from cellttl_runtime.backends.memory import InProcessColumnStore
    return InProcessColumnStore(clock=clock)


# ---------------------------------------------------------------------------
# T1 SQLite fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def sqlite_db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "test.db")


@pytest_asyncio.fixture
async def sqlite_column_store(sqlite_db_path, clock):
    from cellttl_runtime.backends.sqlite import SQLiteColumnStore
    store = await SQLiteColumnStore.create(sqlite_db_path, clock=clock)
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# T2 Redis fixtures
# ---------------------------------------------------------------------------

def _redis_prefix() -> str:
    return f"test_{uuid4().hex[:8]}:"


@pytest_asyncio.fixture
async def redis_column_store(clock):
    pytest.importorskip("redis")
    from cellttl_runtime.backends.redis import RedisColumnStore
    prefix = _redis_prefix()
    try:
        store = await RedisColumnStore.create(
            "redis://localhost:6379", prefix=prefix, clock=clock,
        )
    except Exception:
        pytest.skip("Redis not available")
    yield store
    # cleanup: delete keys matching our test prefix
    with contextlib.suppress(Exception):
        async for key in store._r.scan_iter(match=f"{prefix}*"):
            await store._r.delete(key)
    await store.close()


@pytest.fixture(params=["memory", "sqlite", "redis"])
def column_store(request):
    backends = {
        "memory": "memory_column_store",
        "sqlite": "sqlite_column_store",
        "redis": "redis_column_store",
    }
    return request.getfixturevalue(backends[request.param])


@pytest_asyncio.fixture
async def table_store(column_store):
    """A column store with table ``t`` and family ``f`` created."""
    await column_store.create_table("t")
    await column_store.create_family("t", "f", FamilyRule())
    return column_store


# ---------------------------------------------------------------------------
# Client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(memory_column_store, clock):
    from cellttl_runtime.client import CellTTLClient
    c = CellTTLClient(
        memory_column_store, make_config(), clock=clock, rng=random.Random(7),
    )
    await c.init()
    yield c
    await c.close()


@pytest_asyncio.fixture
async def backend_client(column_store, clock):
    from cellttl_runtime.client import CellTTLClient
    c = CellTTLClient(column_store, make_config(), clock=clock)
    await c.init()
    yield c
    await c.close()
