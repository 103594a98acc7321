"""Unit tests for the B+Tree ordered map."""

from __future__ import annotations

import pytest

from idb_query.domain.services import BTreeIndex
from idb_query.domain.value_objects import IndexKey, KeyRange


def key(value: object) -> IndexKey:
    return IndexKey.of(value)


class TestBTreeIndex:
    """Tests for BTreeIndex."""

    @pytest.fixture
    def tree(self) -> BTreeIndex:
        """Create a small-fanout tree so that splits happen early."""
        return BTreeIndex(name="test_tree", max_keys=4)

    @pytest.mark.unit
    def test_tree_creation(self, tree: BTreeIndex) -> None:
        """An empty tree is a single leaf."""
        assert tree.metadata.name == "test_tree"
        assert tree.metadata.height == 1
        assert tree.metadata.num_entries == 0
        assert len(tree) == 0

    @pytest.mark.unit
    def test_max_keys_validated(self) -> None:
        """Fanout below 3 is rejected."""
        with pytest.raises(ValueError):
            BTreeIndex(name="bad", max_keys=2)

    @pytest.mark.unit
    def test_insert_and_search(self, tree: BTreeIndex) -> None:
        """Inserted values can be found by key."""
        assert tree.insert(key(10), "ten") is True
        assert tree.search(key(10)) == "ten"
        assert key(10) in tree
        assert tree.search(key(11)) is None

    @pytest.mark.unit
    def test_insert_duplicate(self, tree: BTreeIndex) -> None:
        """insert refuses an existing key; upsert overwrites it."""
        tree.insert(key(1), "a")
        assert tree.insert(key(1), "b") is False
        assert tree.upsert(key(1), "b") is False
        assert tree.search(key(1)) == "b"
        assert len(tree) == 1

    @pytest.mark.unit
    def test_splits_keep_order(self, tree: BTreeIndex) -> None:
        """Many inserts in random order split nodes and stay sorted."""
        values = [17, 3, 99, 42, 8, 0, 61, 25, 5, 77, 13, 50, 31, 2, 88]
        for value in values:
            tree.insert(key(value), value)

        assert tree.metadata.height > 1
        assert [k.to_python() for k in tree.keys()] == sorted(values)
        for value in values:
            assert tree.search(key(value)) == value

    @pytest.mark.unit
    def test_delete(self, tree: BTreeIndex) -> None:
        """Deleted keys disappear from search and scans."""
        for value in range(20):
            tree.insert(key(value), value)

        assert tree.delete(key(7)) is True
        assert tree.delete(key(7)) is False
        assert tree.search(key(7)) is None
        assert 7 not in [k.to_python() for k in tree.keys()]
        assert len(tree) == 19

    @pytest.mark.unit
    def test_delete_whole_leaf(self, tree: BTreeIndex) -> None:
        """Scans skip leaves emptied by deletes."""
        for value in range(20):
            tree.insert(key(value), value)
        for value in range(3, 12):
            tree.delete(key(value))

        assert [k.to_python() for k in tree.keys()] == [0, 1, 2, *range(12, 20)]

    @pytest.mark.unit
    def test_range_scan(self, tree: BTreeIndex) -> None:
        """range_scan honors inclusive and exclusive bounds."""
        for value in range(10):
            tree.insert(key(value), value)

        closed = [v for _, v in tree.range_scan(key(2), key(5))]
        open_ = [v for _, v in tree.range_scan(key(2), key(5), False, False)]
        assert closed == [2, 3, 4, 5]
        assert open_ == [3, 4]

    @pytest.mark.unit
    def test_scan_with_key_range(self, tree: BTreeIndex) -> None:
        """scan accepts a KeyRange and resumes after a key."""
        for value in range(10):
            tree.insert(key(value), value)

        key_range = KeyRange.bound(3, 8)
        assert [v for _, v in tree.scan(key_range)] == [3, 4, 5, 6, 7, 8]
        assert [v for _, v in tree.scan(key_range, after=key(5))] == [6, 7, 8]
        assert [v for _, v in tree.scan(key_range, after=key(0))] == [3, 4, 5, 6, 7, 8]

    @pytest.mark.unit
    def test_first(self, tree: BTreeIndex) -> None:
        """first returns the next entry or None."""
        for value in (1, 3, 5):
            tree.insert(key(value), value)

        assert tree.first() == (key(1), 1)
        assert tree.first(after=key(3)) == (key(5), 5)
        assert tree.first(after=key(5)) is None

    @pytest.mark.unit
    def test_mixed_key_types(self, tree: BTreeIndex) -> None:
        """Keys of different types sort by type."""
        for value in ("b", 2, [1], b"x", "a", 1):
            tree.insert(key(value), value)

        assert [k.to_python() for k in tree.keys()] == [1, 2, "a", "b", b"x", [1]]

    @pytest.mark.unit
    def test_clear(self, tree: BTreeIndex) -> None:
        """clear empties the tree."""
        for value in range(10):
            tree.insert(key(value), value)
        tree.clear()

        assert len(tree) == 0
        assert tree.keys() == []
        assert tree.metadata.height == 1
