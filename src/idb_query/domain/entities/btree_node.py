"""B+Tree node structures for ordered maps.

The memory storage engine keeps every collection and every secondary
index in a B+Tree keyed by IndexKey.

Key properties:
    - All values stored in leaf nodes
    - Internal nodes only contain separator keys and child pointers
    - Leaf nodes are linked for efficient range scans

References:
    - Bayer & McCreight, "B+Trees" (1972)
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from idb_query.domain.value_objects import INVALID_NODE_ID, IndexKey, NodeId


class NodeType(IntEnum):
    """Type of B+Tree node."""

    INTERNAL = 0
    LEAF = 1


@dataclass
class BTreeNodeHeader:
    """Header for a B+Tree node.

    Attributes:
        node_type: Whether this is an internal or leaf node.
        parent_id: Parent node (INVALID_NODE_ID for the root).
        next_id: For leaf nodes, the next sibling (INVALID_NODE_ID if last).
        prev_id: For leaf nodes, the previous sibling (INVALID_NODE_ID if first).
    """

    node_type: NodeType
    parent_id: NodeId = INVALID_NODE_ID
    next_id: NodeId = INVALID_NODE_ID
    prev_id: NodeId = INVALID_NODE_ID


@dataclass
class BTreeLeafNode:
    """A leaf node in a B+Tree.

    Leaf nodes store the key-value pairs in sorted key order and are
    linked together for range scans.
    """

    node_id: NodeId
    header: BTreeNodeHeader
    keys: list[IndexKey] = field(default_factory=list)
    values: list[Any] = field(default_factory=list)

    @classmethod
    def new(cls, node_id: NodeId) -> BTreeLeafNode:
        """Create a new empty leaf node."""
        return cls(node_id=node_id, header=BTreeNodeHeader(node_type=NodeType.LEAF))

    @property
    def is_leaf(self) -> bool:
        return True

    @property
    def num_keys(self) -> int:
        return len(self.keys)

    def position(self, key: IndexKey) -> int | None:
        """Return the slot holding the key, or None."""
        pos = bisect_left(self.keys, key)
        if pos < len(self.keys) and self.keys[pos] == key:
            return pos
        return None

    def search(self, key: IndexKey) -> Any | None:
        """Search for a key in this leaf node.

        Returns:
            The stored value if found, None otherwise.
        """
        pos = self.position(key)
        return None if pos is None else self.values[pos]

    def insert(self, key: IndexKey, value: Any) -> bool:
        """Insert a key-value pair, keeping keys sorted.

        Returns:
            True if inserted, False if the key already exists.
        """
        pos = bisect_left(self.keys, key)
        if pos < len(self.keys) and self.keys[pos] == key:
            return False
        self.keys.insert(pos, key)
        self.values.insert(pos, value)
        return True

    def replace(self, key: IndexKey, value: Any) -> bool:
        """Overwrite the value of an existing key.

        Returns:
            True if replaced, False if the key is absent.
        """
        pos = self.position(key)
        if pos is None:
            return False
        self.values[pos] = value
        return True

    def delete(self, key: IndexKey) -> bool:
        """Delete a key from this leaf node.

        Returns:
            True if deleted, False if key not found.
        """
        pos = self.position(key)
        if pos is None:
            return False
        self.keys.pop(pos)
        self.values.pop(pos)
        return True


@dataclass
class BTreeInternalNode:
    """An internal node in a B+Tree.

    A node with N keys has N+1 children. All keys in child[i] are less
    than keys[i], and all keys in child[i+1] are >= keys[i].
    """

    node_id: NodeId
    header: BTreeNodeHeader
    keys: list[IndexKey] = field(default_factory=list)
    children: list[NodeId] = field(default_factory=list)

    @classmethod
    def new(cls, node_id: NodeId) -> BTreeInternalNode:
        """Create a new empty internal node."""
        return cls(node_id=node_id, header=BTreeNodeHeader(node_type=NodeType.INTERNAL))

    @property
    def is_leaf(self) -> bool:
        return False

    @property
    def num_keys(self) -> int:
        return len(self.keys)

    def find_child(self, key: IndexKey) -> NodeId:
        """Return the child that should contain the key."""
        return self.children[bisect_right(self.keys, key)]

    def insert_child(self, key: IndexKey, left_child: NodeId, right_child: NodeId) -> None:
        """Insert a separator key and the child created by a split.

        Args:
            key: The separator key (minimum key in right_child).
            left_child: The existing child node.
            right_child: The new child node.
        """
        if not self.children:
            self.children = [left_child, right_child]
            self.keys = [key]
            return

        pos = bisect_right(self.keys, key)
        self.keys.insert(pos, key)
        self.children.insert(pos + 1, right_child)


BTreeNode = BTreeLeafNode | BTreeInternalNode
