from __future__ import annotations

import pytest
from cellttl_core.config import BackendConfig, CellTTLConfig
from cellttl_core.errors import BackendUnavailableError
from cellttl_core.types import FamilyRule
from cellttl_runtime.backends.memory import InProcessColumnStore
from cellttl_runtime.backends.sqlite import SQLiteColumnStore
from cellttl_runtime.builder import StoreBuilder
from cellttl_runtime.client import CellTTLClient
from cellttl_runtime.protocols import ColumnStoreAdapter


class TestStoreBuilder:
    async def test_build_memory_backend(self):
        config = CellTTLConfig(backend=BackendConfig(tier="memory"))
        store = await StoreBuilder(config).build()
        assert isinstance(store, InProcessColumnStore)
        assert isinstance(store, ColumnStoreAdapter)

    async def test_build_sqlite_backend(self, tmp_path):
        db_path = str(tmp_path / "nested" / "test.db")
        config = CellTTLConfig(backend=BackendConfig(tier="sqlite", sqlite_path=db_path))
        store = await StoreBuilder(config).build()
        try:
            assert isinstance(store, SQLiteColumnStore)
            assert (tmp_path / "nested" / "test.db").exists()
        finally:
            await store.close()

    async def test_build_unknown_tier_raises(self):
        config = CellTTLConfig(backend=BackendConfig(tier="unknown"))
        with pytest.raises(ValueError, match="Unknown backend tier"):
            await StoreBuilder(config).build()

    async def test_build_redis_requires_connection(self):
        pytest.importorskip("redis")
        config = CellTTLConfig(
            backend=BackendConfig(tier="redis", redis_url="redis://127.0.0.1:1"),
        )
        with pytest.raises(BackendUnavailableError):
            await StoreBuilder(config).build()

    async def test_builder_passes_clock(self, clock):
        config = CellTTLConfig(backend=BackendConfig(tier="memory"))
        store = await StoreBuilder(config, clock=clock).build()
        await store.create_table("t")
        await store.create_family("t", "f", FamilyRule())
        await store.put_cells("t", "r", "f", {"c": "v"})
        row = await store.get_row("t", "r")
        assert row.latest("f", "c").timestamp_ms == clock.now


class TestClientCreate:
    async def test_create_persists_to_sqlite(self, tmp_path, clock):
        db_path = str(tmp_path / "cellttl.db")
        config = CellTTLConfig(backend=BackendConfig(tier="sqlite", sqlite_path=db_path))

        client = await CellTTLClient.create(config, clock=clock)
        await client.init()
        await client.set("user:1", {"name": "alice"})
        await client.close()

        reopened = await CellTTLClient.create(config, clock=clock)
        await reopened.init()
        try:
            assert await reopened.get("user:1") == {"name": "alice"}
            assert await reopened.count() == 1
        finally:
            await reopened.close()
