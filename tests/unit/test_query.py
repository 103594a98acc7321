"""Unit tests for query objects and schema declarations."""

from __future__ import annotations

import pytest

from idb_query.domain.entities import (
    CollectionSchema,
    Count,
    DatabaseSchema,
    Delete,
    Filter,
    IndexSchema,
    Insert,
    Last,
    Select,
    Update,
    is_record_batch,
    query_from_dict,
)
from idb_query.domain.value_objects import Bound


class TestFilter:
    """Tests for Filter."""

    @pytest.mark.unit
    def test_pairs_keep_order(self) -> None:
        """Equality pairs keep caller insertion order."""
        where = Filter.from_mapping({"b": 2, "a": 1})
        assert where.pairs == (("b", 2), ("a", 1))
        assert where.bounds is None

    @pytest.mark.unit
    def test_single_bound(self) -> None:
        """A single range mapping becomes one bound."""
        where = Filter.from_mapping({"range": {"start": 1, "end": 2}})
        assert where.bounds == (Bound(1, 2),)
        assert where.range_index is None
        assert where.pairs == ()

    @pytest.mark.unit
    def test_bounds_must_share_index(self) -> None:
        """Bounds across different indexes are rejected."""
        with pytest.raises(ValueError):
            Filter.from_mapping(
                {"range": [{"start": 1, "end": 2, "index": "a"}, {"start": 1, "end": 2}]}
            )

    @pytest.mark.unit
    def test_bound_needs_start_and_end(self) -> None:
        """A bound without end is malformed."""
        with pytest.raises(ValueError, match="end"):
            Filter.from_mapping({"range": {"start": 1}})

    @pytest.mark.unit
    def test_is_empty(self) -> None:
        """An empty filter has no pairs and no range."""
        assert Filter.from_mapping(None).is_empty
        assert Filter.from_mapping({}).is_empty
        assert not Filter.from_mapping({"id": 1}).is_empty


class TestQueries:
    """Tests for query objects."""

    @pytest.mark.unit
    def test_select_normalizes_where(self) -> None:
        """Select turns a mapping into a Filter."""
        query = Select(collection="users", where={"id": 1}, limit=2)
        assert query.filter.pairs == (("id", 1),)

    @pytest.mark.unit
    @pytest.mark.parametrize("limit", [0, -1, True, 1.5])
    def test_select_limit_validated(self, limit: object) -> None:
        """limit must be a positive integer."""
        with pytest.raises(ValueError):
            Select(collection="users", limit=limit)  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_collection_required(self) -> None:
        """Every query names a collection."""
        with pytest.raises(ValueError):
            Count(collection="")

    @pytest.mark.unit
    def test_query_from_dict(self) -> None:
        """The dictionary form maps onto query objects."""
        select = query_from_dict("select", {"from": "users", "where": {"id": 1}, "limit": 3})
        insert = query_from_dict("insert", {"on": "users", "set": [{"id": 1}]})
        update = query_from_dict(
            "update", {"on": "users", "where": {"id": 1}, "set": {"a": 1}, "merge": True}
        )

        assert isinstance(select, Select) and select.limit == 3
        assert isinstance(insert, Insert) and insert.records == [{"id": 1}]
        assert isinstance(update, Update) and update.merge is True and update.patch == {"a": 1}
        assert isinstance(query_from_dict("delete", {"on": "users", "where": {"id": 1}}), Delete)
        assert isinstance(query_from_dict("count", {"from": "users"}), Count)
        assert isinstance(query_from_dict("last", {"from": "users"}), Last)

    @pytest.mark.unit
    def test_query_from_dict_errors(self) -> None:
        """Unknown operations and missing collections are rejected."""
        with pytest.raises(ValueError):
            query_from_dict("upsert", {"on": "users"})
        with pytest.raises(ValueError):
            query_from_dict("select", {"where": {}})

    @pytest.mark.unit
    def test_is_record_batch(self) -> None:
        """Only non-string sequences are batches."""
        assert is_record_batch([{"id": 1}])
        assert is_record_batch(())
        assert not is_record_batch("abc")
        assert not is_record_batch({"id": 1})


class TestSchema:
    """Tests for schema declarations."""

    @pytest.mark.unit
    def test_from_mapping(self) -> None:
        """The dictionary form accepts camelCase options."""
        schema = DatabaseSchema.from_mapping(
            {
                "name": "app",
                "version": 2,
                "schemas": [
                    {
                        "name": "users",
                        "options": {"keyPath": "uid", "autoIncrement": True},
                        "indexes": [
                            {"name": "byTag", "keyPath": "tags", "options": {"multiEntry": True}},
                            {"name": "email", "options": {"unique": True}},
                        ],
                        "data": [{"uid": 1}],
                    }
                ],
            }
        )

        users = schema.collections[0]
        assert schema.version == 2
        assert users.key_path == "uid"
        assert users.auto_increment is True
        assert users.indexes[0] == IndexSchema("byTag", "tags", multi_entry=True)
        assert users.indexes[1] == IndexSchema("email", "email", unique=True)
        assert users.data == [{"uid": 1}]

    @pytest.mark.unit
    def test_default_key_path(self) -> None:
        """Collections default to an inline 'id' key."""
        assert CollectionSchema.from_mapping({"name": "things"}).key_path == "id"

    @pytest.mark.unit
    def test_compound_key_path(self) -> None:
        """List key paths become tuples."""
        index = IndexSchema.from_mapping({"name": "fullName", "keyPath": ["last", "first"]})
        assert index.key_path == ("last", "first")

    @pytest.mark.unit
    def test_validation(self) -> None:
        """Malformed declarations are rejected."""
        with pytest.raises(ValueError):
            DatabaseSchema(name="app", version=0)
        with pytest.raises(ValueError):
            CollectionSchema(
                name="users", indexes=(IndexSchema("a", "x"), IndexSchema("a", "y"))
            )
        with pytest.raises(ValueError):
            IndexSchema(name="pair", key_path=("a", "b"), multi_entry=True)
