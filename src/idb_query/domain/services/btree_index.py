"""B+Tree ordered map.

This module implements the B+Tree used by the memory storage engine for
both collections (primary key -> record) and secondary indexes
(index key -> sorted primary keys).

Key features:
    - O(log n) search, insert, delete
    - Efficient range scans via linked leaf nodes
    - Seek-after-key, which is how cursors resume

The tree is not thread-safe; the engine drives it from a single event
loop.

References:
    - Bayer & McCreight, "B+Trees" (1972)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

from idb_query.domain.entities.btree_node import (
    BTreeInternalNode,
    BTreeLeafNode,
    BTreeNode,
)
from idb_query.domain.value_objects import INVALID_NODE_ID, IndexKey, KeyRange, NodeId

# Maximum keys per node (fanout - 1)
DEFAULT_MAX_KEYS = 32


@dataclass
class TreeMetadata:
    """Metadata for a tree."""

    name: str
    height: int
    num_entries: int
    num_nodes: int


class BTreeIndex:
    """A B+Tree mapping IndexKey to arbitrary values.

    Nodes are kept in memory and addressed by NodeId. Deletes do not
    rebalance; empty leaves stay linked and are skipped by scans.
    """

    def __init__(self, name: str, max_keys: int = DEFAULT_MAX_KEYS) -> None:
        """Initialize the tree with an empty root leaf node.

        Args:
            name: Tree name, used in metadata.
            max_keys: Maximum keys per node before it splits (>= 3).
        """
        if max_keys < 3:
            raise ValueError(f"max_keys must be at least 3, got {max_keys}")
        self.name = name
        self.max_keys = max_keys
        self.clear()

    def clear(self) -> None:
        """Drop every entry."""
        self._next_node_id = 1
        self._nodes: dict[NodeId, BTreeNode] = {NodeId(0): BTreeLeafNode.new(NodeId(0))}
        self.root_id = NodeId(0)
        self._height = 1
        self._num_entries = 0

    def __len__(self) -> int:
        return self._num_entries

    @property
    def metadata(self) -> TreeMetadata:
        """Return tree metadata."""
        return TreeMetadata(
            name=self.name,
            height=self._height,
            num_entries=self._num_entries,
            num_nodes=len(self._nodes),
        )

    def _get_node(self, node_id: NodeId) -> BTreeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise RuntimeError(f"Node {node_id} not found in tree '{self.name}'")
        return node

    def _allocate_id(self) -> NodeId:
        node_id = NodeId(self._next_node_id)
        self._next_node_id += 1
        return node_id

    def _find_leaf(self, key: IndexKey) -> BTreeLeafNode:
        """Find the leaf node that should contain the given key."""
        node = self._get_node(self.root_id)
        while not node.is_leaf:
            assert isinstance(node, BTreeInternalNode)
            node = self._get_node(node.find_child(key))
        assert isinstance(node, BTreeLeafNode)
        return node

    def _leftmost_leaf(self) -> BTreeLeafNode:
        node = self._get_node(self.root_id)
        while not node.is_leaf:
            assert isinstance(node, BTreeInternalNode)
            node = self._get_node(node.children[0])
        assert isinstance(node, BTreeLeafNode)
        return node

    def search(self, key: IndexKey) -> Any | None:
        """Return the value stored under a key, or None."""
        return self._find_leaf(key).search(key)

    def __contains__(self, key: IndexKey) -> bool:
        return self._find_leaf(key).position(key) is not None

    def insert(self, key: IndexKey, value: Any) -> bool:
        """Insert a new key.

        Returns:
            True if inserted, False if the key already exists.
        """
        leaf = self._find_leaf(key)
        if not leaf.insert(key, value):
            return False

        self._num_entries += 1
        if leaf.num_keys > self.max_keys:
            self._split_leaf(leaf)
        return True

    def upsert(self, key: IndexKey, value: Any) -> bool:
        """Insert a key or overwrite its value.

        Returns:
            True if a new key was created, False if an existing one was replaced.
        """
        if self._find_leaf(key).replace(key, value):
            return False
        return self.insert(key, value)

    def delete(self, key: IndexKey) -> bool:
        """Delete a key.

        Returns:
            True if deleted, False if key not found.
        """
        if self._find_leaf(key).delete(key):
            self._num_entries -= 1
            return True
        return False

    def _split_leaf(self, leaf: BTreeLeafNode) -> None:
        """Move the upper half of an overflowing leaf into a new sibling."""
        new_leaf = BTreeLeafNode.new(self._allocate_id())

        mid = len(leaf.keys) // 2
        new_leaf.keys = leaf.keys[mid:]
        new_leaf.values = leaf.values[mid:]
        leaf.keys = leaf.keys[:mid]
        leaf.values = leaf.values[:mid]

        new_leaf.header.next_id = leaf.header.next_id
        new_leaf.header.prev_id = leaf.node_id
        leaf.header.next_id = new_leaf.node_id
        if new_leaf.header.next_id != INVALID_NODE_ID:
            self._get_node(new_leaf.header.next_id).header.prev_id = new_leaf.node_id

        self._nodes[new_leaf.node_id] = new_leaf
        self._insert_into_parent(leaf, new_leaf.keys[0], new_leaf)

    def _insert_into_parent(
        self,
        left_child: BTreeNode,
        key: IndexKey,
        right_child: BTreeNode,
    ) -> None:
        """Register the node created by a split with its parent."""
        parent_id = left_child.header.parent_id

        if parent_id == INVALID_NODE_ID:
            new_root = BTreeInternalNode.new(self._allocate_id())
            new_root.insert_child(key, left_child.node_id, right_child.node_id)
            left_child.header.parent_id = new_root.node_id
            right_child.header.parent_id = new_root.node_id
            self._nodes[new_root.node_id] = new_root
            self.root_id = new_root.node_id
            self._height += 1
            return

        parent = self._get_node(parent_id)
        assert isinstance(parent, BTreeInternalNode)
        parent.insert_child(key, left_child.node_id, right_child.node_id)
        right_child.header.parent_id = parent_id

        if parent.num_keys > self.max_keys:
            self._split_internal(parent)

    def _split_internal(self, node: BTreeInternalNode) -> None:
        """Split an overflowing internal node; the middle key moves up."""
        new_node = BTreeInternalNode.new(self._allocate_id())

        mid = len(node.keys) // 2
        separator = node.keys[mid]

        new_node.keys = node.keys[mid + 1 :]
        new_node.children = node.children[mid + 1 :]
        node.keys = node.keys[:mid]
        node.children = node.children[: mid + 1]

        for child_id in new_node.children:
            self._get_node(child_id).header.parent_id = new_node.node_id

        self._nodes[new_node.node_id] = new_node
        self._insert_into_parent(node, separator, new_node)

    def range_scan(
        self,
        low: IndexKey | None = None,
        high: IndexKey | None = None,
        include_low: bool = True,
        include_high: bool = True,
    ) -> Iterator[tuple[IndexKey, Any]]:
        """Scan a range of keys in ascending order.

        Args:
            low: Lower bound (None for unbounded).
            high: Upper bound (None for unbounded).
            include_low: Include the low bound in results.
            include_high: Include the high bound in results.

        Yields:
            (key, value) tuples in sorted order.
        """
        leaf: BTreeLeafNode | None = (
            self._find_leaf(low) if low is not None else self._leftmost_leaf()
        )

        while leaf is not None:
            for i, key in enumerate(leaf.keys):
                if low is not None:
                    if key < low or (not include_low and key == low):
                        continue
                if high is not None:
                    if key > high or (not include_high and key == high):
                        return
                yield key, leaf.values[i]

            if leaf.header.next_id == INVALID_NODE_ID:
                return
            next_node = self._get_node(leaf.header.next_id)
            assert isinstance(next_node, BTreeLeafNode)
            leaf = next_node

    def scan(
        self,
        key_range: KeyRange | None = None,
        after: IndexKey | None = None,
    ) -> Iterator[tuple[IndexKey, Any]]:
        """Scan the entries inside a key range, optionally resuming past a key.

        Args:
            key_range: Range to scan (None for everything).
            after: Only yield keys strictly greater than this one.
        """
        low = key_range.lower if key_range else None
        include_low = not key_range.lower_open if key_range else True
        if after is not None and (low is None or after >= low):
            low, include_low = after, False

        high = key_range.upper if key_range else None
        include_high = not key_range.upper_open if key_range else True
        yield from self.range_scan(low, high, include_low, include_high)

    def first(
        self,
        key_range: KeyRange | None = None,
        after: IndexKey | None = None,
    ) -> tuple[IndexKey, Any] | None:
        """Return the first entry of ``scan(key_range, after)``, or None."""
        return next(self.scan(key_range, after), None)

    def keys(self) -> list[IndexKey]:
        """Return every key in ascending order."""
        return [key for key, _ in self.range_scan()]
