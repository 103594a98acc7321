"""Unit tests for the query executor."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from idb_query.adapters.outbound import MemoryStorageEngine
from idb_query.adapters.outbound.memory_engine import MemoryCursor
from idb_query.application import Database
from idb_query.domain.entities import Count, Delete, Insert, Last, Select, Update
from idb_query.domain.services import PostFilterMode
from idb_query.infrastructure.config import Config, EngineConfig, QueryConfig, StoreConfig
from idb_query.infrastructure.metrics import MetricsRegistry
from idb_query.ports.inbound import StorageFailure, UnsupportedPayload
from idb_query.ports.outbound import EngineError


def ids(records: list[Any]) -> list[Any]:
    return [record["id"] for record in records]


class TestSelect:
    """Tests for select and its access paths."""

    @pytest.mark.unit
    async def test_primary_key(self, database: Database) -> None:
        """A key pair reads one record, or none."""
        assert await database.select("users", {"id": 3}) == [
            {"id": 3, "role": "admin", "name": "Cid", "email": "cid@example.com"}
        ]
        assert await database.select("users", {"id": 99}) == []

    @pytest.mark.unit
    async def test_full_scan(self, database: Database) -> None:
        """No filter returns every record in primary key order."""
        assert ids(await database.select("users")) == [1, 2, 3, 4, 5]
        assert ids(await database.select("users", {}, limit=2)) == [1, 2]

    @pytest.mark.unit
    async def test_index_point(self, database: Database) -> None:
        """A pair naming an index reads through it."""
        assert ids(await database.select("users", {"byRole": "admin"})) == [1, 3, 5]
        assert ids(await database.select("users", {"role": "user"})) == [2, 4]

    @pytest.mark.unit
    async def test_index_point_limit(self, database: Database) -> None:
        """The limit stops an index read without changing the collection."""
        assert ids(await database.select("users", {"byRole": "admin"}, limit=1)) == [1]
        assert await database.count("users") == 5

    @pytest.mark.unit
    async def test_multi_entry_index(self, database: Database) -> None:
        """A multi-entry index matches any element of an array field."""
        assert ids(await database.select("users", {"byTag": "dev"})) == [4, 5]
        assert ids(await database.select("users", {"byTag": "ops"})) == [4]

    @pytest.mark.unit
    async def test_primary_key_range(self, database: Database) -> None:
        """A range without an index scans the primary key, inclusively."""
        where = {"range": {"start": 2, "end": 4}}
        assert ids(await database.select("users", where)) == [2, 3, 4]
        assert ids(await database.select("users", where, limit=2)) == [2, 3]

    @pytest.mark.unit
    async def test_bounds_in_caller_order(self, database: Database) -> None:
        """Several bounds are visited in the order given."""
        where = {"range": [{"start": 4, "end": 5}, {"start": 1, "end": 1}]}
        assert ids(await database.select("users", where)) == [4, 5, 1]

    @pytest.mark.unit
    async def test_index_range(self, database: Database) -> None:
        """A bound naming an index scans that index."""
        where = {"range": {"start": "admin", "end": "admin", "index": "byRole"}}
        assert ids(await database.select("users", where)) == [1, 3, 5]

    @pytest.mark.unit
    async def test_range_post_filter_limit_is_prefix(self, database: Database) -> None:
        """With a post-filter the limit applies after filtering."""
        where = {"role": "admin", "range": {"start": 1, "end": 5}}
        unlimited = ids(await database.select("users", where))
        limited = ids(await database.select("users", where, limit=2))

        assert unlimited == [1, 3, 5]
        assert limited == unlimited[:2]

    @pytest.mark.unit
    async def test_full_scan_post_filter(self, database: Database) -> None:
        """Every pair must match when several are given."""
        where = {"role": "admin", "name": "Eve"}
        assert ids(await database.select("users", where)) == [5]
        assert ids(await database.select("users", {"name": "Eve"}, limit=1)) == [5]

    @pytest.mark.unit
    async def test_invalid_key_value_filters(self, database: Database) -> None:
        """A pair that cannot be a key is checked in memory."""
        assert await database.select("users", {"id": None}) == []
        assert await database.select("users", {"role": {"is": "admin"}}) == []

    @pytest.mark.unit
    async def test_inverted_range(self, database: Database) -> None:
        """A bound whose start exceeds its end is rejected."""
        with pytest.raises(ValueError):
            await database.select("users", {"range": {"start": 5, "end": 1}})

    @pytest.mark.unit
    async def test_unknown_collection(self, database: Database) -> None:
        """Selecting from an undeclared collection is a storage failure."""
        with pytest.raises(StorageFailure) as exc_info:
            await database.select("ghosts")
        assert exc_info.value.error_name == "NotFoundError"

    @pytest.mark.unit
    async def test_cursor_failure(
        self,
        database: Database,
        engine: MemoryStorageEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A cursor that fails mid-scan fails the select and leaks nothing."""

        def broken(self: MemoryCursor) -> bool:
            raise EngineError("UnknownError", "scan interrupted")

        monkeypatch.setattr(MemoryCursor, "_seek", broken)

        with pytest.raises(StorageFailure) as exc_info:
            await database.select("users", {"name": "Ann"})

        assert exc_info.value.error_name == "UnknownError"
        stats = engine.get_stats()
        assert stats.active_transactions == 0
        assert stats.active_cursors == 0

    @pytest.mark.unit
    async def test_metrics(self, database: Database, metrics_registry: MetricsRegistry) -> None:
        """Selects count their outcome and access path."""
        await database.select("users", {"id": 1})
        await database.select("users", {"byRole": "user"})

        registry = metrics_registry.registry
        assert registry.get_sample_value(
            "idb_queries_total", {"operation": "select", "status": "success"}
        ) == 2
        assert registry.get_sample_value("idb_access_paths_total", {"path": "primary_key"}) == 1
        assert registry.get_sample_value("idb_access_paths_total", {"path": "index_point"}) == 1
        assert registry.get_sample_value("idb_records_returned_total") == 3


class TestPostFilterMode:
    """Tests for the legacy first-pair post-filter."""

    @pytest_asyncio.fixture
    async def legacy(
        self,
        database: Database,
        engine: MemoryStorageEngine,
        metrics_registry: MetricsRegistry,
    ) -> AsyncGenerator[Database, None]:
        """Connect a second database handle that checks only the first pair."""
        config = Config(
            store=StoreConfig(name="test_db", version=1),
            query=QueryConfig(post_filter_mode="first"),
            engine=EngineConfig(btree_max_keys=4),
        )
        db = Database(database.schema, engine=engine, config=config, metrics=metrics_registry)
        await db.connect()
        yield db
        await db.close()

    @pytest.mark.unit
    async def test_first_pair_only(self, legacy: Database) -> None:
        """Only the first pair decides the result."""
        assert legacy.executor.post_filter_mode == PostFilterMode.FIRST
        assert ids(await legacy.select("users", {"role": "admin", "name": "Eve"})) == [1, 3, 5]

    @pytest.mark.unit
    async def test_shared_engine_sees_same_data(
        self, database: Database, legacy: Database
    ) -> None:
        """Reconnecting does not reseed the collections."""
        assert await legacy.count("users") == 5
        assert await database.count("users") == 5


class TestCountAndLast:
    """Tests for count and last."""

    @pytest.mark.unit
    async def test_count(self, database: Database) -> None:
        """count is exact."""
        assert await database.count("users") == 5
        assert await database.count("events") == 0

    @pytest.mark.unit
    async def test_last(self, database: Database) -> None:
        """last returns the greatest primary key, or None."""
        assert await database.last("users") == 5
        assert await database.last("events") is None

    @pytest.mark.unit
    async def test_last_mixed_key_types(self, database: Database) -> None:
        """Strings sort after numbers."""
        await database.insert("users", {"id": "zed"})
        assert await database.last("users") == "zed"


class TestInsert:
    """Tests for insert."""

    @pytest.mark.unit
    async def test_insert_one(self, database: Database) -> None:
        """A single record is added and returned as given."""
        record = {"id": 6, "role": "user"}
        assert await database.insert("users", record) is record
        assert await database.count("users") == 6

    @pytest.mark.unit
    async def test_insert_batch(self, database: Database) -> None:
        """A batch is added in one transaction."""
        batch = [{"id": 6}, {"id": 7}, {"id": 8}]
        assert await database.insert("users", batch) == batch
        assert await database.last("users") == 8

    @pytest.mark.unit
    async def test_auto_increment(self, database: Database) -> None:
        """Records without a key get generated ones."""
        await database.insert("events", [{"kind": "a"}, {"kind": "b"}])
        assert ids(await database.select("events")) == [1, 2]

    @pytest.mark.unit
    async def test_failed_batch_rolls_back(
        self, database: Database, engine: MemoryStorageEngine
    ) -> None:
        """One bad record rolls back the whole batch."""
        batch = [{"id": 6}, {"id": 1}, {"id": 7}]
        with pytest.raises(StorageFailure) as exc_info:
            await database.insert("users", batch)

        assert exc_info.value.error_name == "ConstraintError"
        assert await database.count("users") == 5
        assert await database.select("users", {"id": 6}) == []
        assert engine.get_stats().active_transactions == 0

    @pytest.mark.unit
    async def test_unique_index_violation(self, database: Database) -> None:
        """A record that clashes on a unique index is rejected."""
        with pytest.raises(StorageFailure) as exc_info:
            await database.insert("users", {"id": 9, "email": "ann@example.com"})
        assert exc_info.value.error_name == "ConstraintError"

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", ["text", 42, None, [{"id": 6}, "text"]])
    async def test_unsupported_payload(self, database: Database, payload: Any) -> None:
        """Payloads that are not records write nothing."""
        with pytest.raises(UnsupportedPayload):
            await database.insert("users", payload)
        assert await database.count("users") == 5


class TestUpdate:
    """Tests for update."""

    @pytest.mark.unit
    async def test_replace(self, database: Database) -> None:
        """Without merge the patch replaces the record."""
        written = await database.update("users", {"id": 1}, {"role": "user"})

        assert written == {"role": "user", "id": 1}
        assert await database.select("users", {"id": 1}) == [{"role": "user", "id": 1}]
        assert ids(await database.select("users", {"byRole": "user"})) == [1, 2, 4]

    @pytest.mark.unit
    async def test_merge(self, database: Database) -> None:
        """With merge the patch is shallow-merged into the record."""
        written = await database.update("users", {"id": 2}, {"name": "Robert"}, merge=True)
        assert written == {
            "id": 2,
            "role": "user",
            "name": "Robert",
            "email": "bob@example.com",
        }

    @pytest.mark.unit
    async def test_merge_missing_record_upserts(self, database: Database) -> None:
        """Merging into a missing key creates the record."""
        written = await database.update("users", {"key": 42}, {"name": "New"}, merge=True)
        assert written == {"name": "New", "id": 42}
        assert await database.count("users") == 6

    @pytest.mark.unit
    async def test_no_primary_key_is_noop(self, database: Database) -> None:
        """Without a primary key nothing is written."""
        assert await database.update("users", {"role": "admin"}, {"role": "x"}) is None
        assert ids(await database.select("users", {"role": "x"})) == []
        assert await database.count("users") == 5

    @pytest.mark.unit
    async def test_merge_needs_mapping(self, database: Database) -> None:
        """A merge patch must be a mapping."""
        with pytest.raises(ValueError):
            await database.update("users", {"id": 1}, ["not", "a", "mapping"], merge=True)

    @pytest.mark.unit
    async def test_conflicting_key(self, database: Database) -> None:
        """A patch carrying another key is a data error and writes nothing."""
        with pytest.raises(StorageFailure) as exc_info:
            await database.update("users", {"id": 1}, {"id": 2, "role": "x"})
        assert exc_info.value.error_name == "DataError"
        assert (await database.select("users", {"id": 1}))[0]["role"] == "admin"


class TestDelete:
    """Tests for delete."""

    @pytest.mark.unit
    async def test_delete(self, database: Database) -> None:
        """delete reports whether a record was removed."""
        assert await database.delete("users", {"id": 5}) is True
        assert await database.delete("users", {"id": 5}) is False
        assert await database.count("users") == 4
        assert ids(await database.select("users", {"byTag": "dev"})) == [4]

    @pytest.mark.unit
    async def test_delete_zero_key(self, database: Database) -> None:
        """Falsy keys are real keys."""
        await database.insert("users", {"id": 0})
        assert await database.delete("users", {"id": 0}) is True

    @pytest.mark.unit
    async def test_no_primary_key_is_noop(self, database: Database) -> None:
        """Without a primary key nothing is deleted."""
        assert await database.delete("users", {"role": "admin"}) is None
        assert await database.count("users") == 5


class TestExecute:
    """Tests for query object dispatch."""

    @pytest.mark.unit
    async def test_dispatch(self, database: Database, engine: MemoryStorageEngine) -> None:
        """execute runs every kind of query object."""
        await database.execute(Insert(collection="users", records={"id": 10, "role": "guest"}))
        await database.execute(
            Update(collection="users", where={"id": 10}, patch={"name": "G"}, merge=True)
        )

        assert await database.execute(Select(collection="users", where={"id": 10})) == [
            {"id": 10, "role": "guest", "name": "G"}
        ]
        assert await database.execute(Count(collection="users")) == 6
        assert await database.execute(Last(collection="users")) == 10
        assert await database.execute(Delete(collection="users", where={"id": 10})) is True

        stats = engine.get_stats()
        assert stats.active_transactions == 0
        assert stats.active_cursors == 0

    @pytest.mark.unit
    async def test_unknown_query_type(self, database: Database) -> None:
        """Objects that are not queries are rejected."""
        with pytest.raises(TypeError):
            await database.execute("select * from users")  # type: ignore[arg-type]
