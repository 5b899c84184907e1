from __future__ import annotations

import pytest
from cellttl_core.config import BackendConfig, CellTTLConfig
from cellttl_core.errors import BackendError, PartialWriteError
from cellttl_core.types import Cell, RowResult
from cellttl_runtime.backends.memory import InProcessColumnStore
from cellttl_runtime.client import CellTTLClient
from conftest import make_config


class TestClientScenarios:
    """End-to-end behaviour over every backend."""

    async def test_cell_expires_after_ttl_and_sweep(self, backend_client, clock):
        await backend_client.set("user:1", "alice", ttl=5, column="name")
        assert await backend_client.get("user:1", "name") == "alice"

        clock.advance(4_000)
        await backend_client.job.run_once()
        assert await backend_client.get("user:1", "name") == "alice"

        clock.advance(1_000)
        await backend_client.job.run_once()
        assert await backend_client.get("user:1", "name") is None

    async def test_new_row_increments_count_once(self, backend_client):
        assert await backend_client.count() == 0
        await backend_client.set("user:1", "alice", column="name")
        assert await backend_client.count() == 1
        await backend_client.set("user:1", "a@example.com", column="email")
        assert await backend_client.count() == 1
        await backend_client.set("user:2", "bob", column="name")
        assert await backend_client.count() == 2

    async def test_structured_values_round_trip(self, backend_client):
        profile = {"name": "alice", "roles": ["admin"], "age": 30}
        await backend_client.set("user:1", profile, column="profile")
        assert await backend_client.get("user:1", "profile") == profile

    async def test_multi_set_and_get_row(self, backend_client):
        await backend_client.multi_set("user:1", {"name": "alice", "age": 30, "tags": ["x"]})
        assert await backend_client.get_row("user:1") == {
            "name": "alice", "age": 30, "tags": ["x"],
        }

    async def test_multi_set_ttl_expires_every_column(self, backend_client, clock):
        await backend_client.multi_set("user:1", {"name": "alice", "age": 30}, ttl=2)
        await backend_client.set("user:1", "keep", column="note")
        clock.advance(2_000)
        report = await backend_client.job.run_once()
        assert report.deleted == 2
        assert await backend_client.get_row("user:1") == {"note": "keep"}

    async def test_row_whose_columns_all_expire_counts_once(self, backend_client, clock):
        await backend_client.multi_set("user:1", {"a": 1, "b": 2, "c": 3}, ttl=2)
        await backend_client.set("user:2", "bob")
        assert await backend_client.count() == 2
        clock.advance(2_000)
        report = await backend_client.job.run_once()
        assert report.expired == 3
        assert report.deleted == 3
        assert report.failed == 0
        assert await backend_client.get_row("user:1") is None
        assert await backend_client.count() == 1

    async def test_counters(self, backend_client):
        assert await backend_client.increase("hits") == 1
        assert await backend_client.increase("hits") == 2
        assert await backend_client.decrease("hits") == 1
        assert await backend_client.get("hits") == 1
        assert await backend_client.count() == 1

    async def test_clean_up_drops_tables(self, backend_client, column_store):
        await backend_client.set("user:1", "alice")
        await backend_client.clean_up()
        assert not await column_store.table_exists(backend_client.table)
        assert not await column_store.table_exists(backend_client.metadata_table)


class TestClientCells:
    async def test_default_column(self, client):
        await client.set("k", "v")
        assert client.default_column == "value"
        assert await client.get("k") == "v"
        assert await client.get("k", "value") == "v"

    async def test_get_missing(self, client):
        assert await client.get("nope") is None
        assert await client.get_row("nope") is None

    async def test_get_missing_column_of_existing_row(self, client):
        await client.set("k", "v", column="a")
        assert await client.get("k", "b") is None

    async def test_empty_row_key_is_noop(self, client):
        assert await client.set("", "v") is None
        assert await client.get("") is None
        assert await client.delete("") is None
        assert await client.increase("") is None
        assert await client.count() == 0

    async def test_negative_ttl_rejected(self, client):
        with pytest.raises(ValueError):
            await client.set("k", "v", ttl=-1)
        assert await client.get("k") is None

    async def test_zero_ttl_means_no_expiry(self, client, clock):
        await client.set("k", "v", ttl=0)
        clock.advance(10_000_000)
        report = await client.job.run_once()
        assert report.scanned == 0
        assert await client.get("k") == "v"

    async def test_delete_cell(self, client):
        await client.multi_set("k", {"a": 1, "b": 2})
        await client.delete("k", "a")
        assert await client.get_row("k") == {"b": 2}
        assert await client.count() == 1
        await client.delete("k", "b")
        assert await client.get_row("k") is None
        assert await client.count() == 0

    async def test_delete_missing_does_not_decrement(self, client):
        await client.set("k", "v")
        await client.delete("other")
        await client.delete_row("other")
        assert await client.count() == 1

    async def test_delete_row(self, client):
        await client.multi_set("k", {"a": 1, "b": 2})
        await client.delete_row("k")
        assert await client.get_row("k") is None
        assert await client.count() == 0

    async def test_delete_before_expiry_leaves_harmless_marker(self, client, clock):
        await client.set("k", "v", ttl=1)
        await client.delete("k")
        assert await client.count() == 0
        clock.advance(1_000)
        report = await client.job.run_once()
        assert report.deleted == 1
        assert report.failed == 0
        assert await client.count() == 0

    async def test_retrieve_complete(self, client, clock):
        await client.set("k", {"a": 1})
        cell = await client.get_cell("k")
        assert isinstance(cell, Cell)
        assert cell.value == '{"a":1}'
        assert cell.timestamp_ms == clock.now

    async def test_retrieve_complete_row(self, client):
        await client.multi_set("k", {"a": "x"})
        row = await client.retrieve(client.table, "default", "k", complete=True)
        assert isinstance(row["a"], Cell)

    async def test_retrieve_without_table_or_key(self, client):
        assert await client.retrieve("", "default", "k") is None
        assert await client.retrieve(client.table, "default", "") is None

    async def test_insert_without_data_is_noop(self, client, memory_column_store):
        await client.insert(client.table, "default", "k", {})
        await client.insert(client.table, "default", "k", None)
        assert not await memory_column_store.row_exists(client.table, "k")

    async def test_insert_encodes_none_as_empty(self, client):
        await client.insert(client.table, "default", "k", {"a": None})
        assert await client.get("k", "a") == ""


class TestClientCounters:
    async def test_increase_with_ttl_expires(self, client, clock):
        await client.increase("hits", "n", ttl=1)
        await client.increase("hits", "n", ttl=1)
        clock.advance(1_000)
        report = await client.job.run_once()
        # Both writes share one expiry instant, hence one marker.
        assert report.expired == 1
        assert await client.get("hits", "n") is None
        assert await client.count() == 0

    async def test_decrease_new_cell(self, client):
        assert await client.decrease("k", "n") == -1
        assert await client.count() == 1

    async def test_increase_non_integer_raises(self, client):
        await client.set("k", "alice")
        with pytest.raises(BackendError):
            await client.increase("k")

    async def test_multi_add(self, client):
        totals = await client.multi_add("k", {"a": 2, "b": -3})
        assert totals == {"a": 2, "b": -3}
        totals = await client.multi_add("k", {"a": 5})
        assert totals == {"a": 7}
        assert await client.get_row("k") == {"a": 7, "b": -3}
        assert await client.count() == 1

    async def test_multi_add_skips_non_integers(self, client):
        totals = await client.multi_add("k", {"a": 1, "b": "x", "c": 0, "d": 1.5, "e": True})
        assert totals == {"a": 1}
        assert await client.get_row("k") == {"a": 1}

    async def test_multi_add_nothing_to_add(self, client):
        assert await client.multi_add("k", {"a": 0, "b": "x"}, ttl=5) is None
        assert await client.multi_add("k", {}) is None
        assert await client.get_row("k") is None

    async def test_multi_add_ttl_marks_incremented_columns(self, client, clock):
        await client.multi_add("k", {"a": 1, "b": 1}, ttl=3)
        clock.advance(3_000)
        report = await client.job.run_once()
        assert report.expired == 2
        assert await client.get_row("k") is None


class TestClientScan:
    async def test_scan_cells(self, client):
        await client.set("user:1", "alice")
        await client.set("user:2", "bob")
        await client.set("group:1", "admins")
        rows = await client.scan_cells(prefix="user:")
        assert [r.key for r in rows] == ["user:1", "user:2"]

    async def test_scan_cells_etl_drops_falsy(self, client):
        await client.set("user:1", "alice")
        await client.set("user:2", "")

        def value_of(row: RowResult):
            return row.latest("default", "value").value

        assert await client.scan_cells(etl=value_of) == ["alice"]


class FlakyCounterStore(InProcessColumnStore):
    """Fails every write to the metadata table."""

    async def increment_cell(self, table, row_key, family, column, delta):
        if table.endswith("_metadata"):
            raise BackendError("counter throttled")
        return await super().increment_cell(table, row_key, family, column, delta)

    async def put_cells(self, table, row_key, family, cells):
        if table.endswith("_metadata"):
            raise BackendError("marker throttled")
        await super().put_cells(table, row_key, family, cells)


class BrokenStore(InProcessColumnStore):
    async def put_cells(self, table, row_key, family, cells):
        raise BackendError("store down")


class TestClientErrors:
    async def test_partial_failure_keeps_primary_write(self, clock):
        client = CellTTLClient(FlakyCounterStore(clock=clock), make_config(), clock=clock)
        await client.init()
        try:
            with pytest.raises(PartialWriteError) as excinfo:
                await client.set("k", "v", ttl=5)
            assert len(excinfo.value.errors) == 2
            assert excinfo.value.succeeded == 1
            assert await client.get("k") == "v"
        finally:
            await client.close()

    async def test_single_failure_raised_as_is(self, clock):
        client = CellTTLClient(BrokenStore(clock=clock), make_config(), clock=clock)
        await client.init()
        try:
            with pytest.raises(BackendError) as excinfo:
                await client.set("k", "v")
            assert not isinstance(excinfo.value, PartialWriteError)
        finally:
            await client.close()


class TestClientLifecycle:
    async def test_init_creates_tables(self, memory_column_store, clock):
        client = CellTTLClient(memory_column_store, make_config(name="users"), clock=clock)
        await client.init()
        await client.init()  # Should not raise
        assert await memory_column_store.table_exists("users")
        assert await memory_column_store.family_exists("users", "default")
        assert await memory_column_store.table_exists("users_metadata")
        assert await memory_column_store.family_exists("users_metadata", "default_metadata")
        await client.close()

    async def test_init_keeps_existing_data(self, memory_column_store, clock):
        first = CellTTLClient(memory_column_store, make_config(), clock=clock)
        await first.init()
        await first.set("k", "v")
        await first.close()

        second = CellTTLClient(memory_column_store, make_config(), clock=clock)
        await second.init()
        assert await second.get("k") == "v"
        assert await second.count() == 1
        await second.close()

    async def test_max_age_applies_to_primary_only(self, memory_column_store, clock):
        client = CellTTLClient(memory_column_store, make_config(max_age_seconds=60), clock=clock)
        await client.init()
        await client.set("k", "v")
        clock.advance(60_000)
        assert await client.get("k") is None
        assert await client.count() == 1
        await client.close()

    async def test_close_stops_sweep(self, client):
        await client.close()
        assert client.job.closed
        await client.close()  # Should not raise

    async def test_create_owns_store(self, clock):
        config = CellTTLConfig(
            store=make_config().store,
            ttl=make_config().ttl,
            backend=BackendConfig(tier="memory"),
        )
        client = await CellTTLClient.create(config, clock=clock)
        await client.init()
        await client.set("k", "v", ttl=1)
        clock.advance(1_000)
        await client.job.run_once()
        assert await client.get("k") is None
        await client.close()
