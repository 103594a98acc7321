"""Domain entities for the query layer.

Exports:
    Queries:
        - Select, Insert, Update, Delete, Count, Last
        - Filter: Normalized where clause
        - query_from_dict: Build a query from its dictionary form

    Schema:
        - DatabaseSchema, CollectionSchema, IndexSchema

    B+Tree nodes:
        - BTreeLeafNode, BTreeInternalNode, BTreeNodeHeader, NodeType
"""

from idb_query.domain.entities.btree_node import (
    BTreeInternalNode,
    BTreeLeafNode,
    BTreeNode,
    BTreeNodeHeader,
    NodeType,
)
from idb_query.domain.entities.query import (
    RANGE_FIELD,
    Count,
    Delete,
    Filter,
    Insert,
    Last,
    Query,
    Select,
    Update,
    is_record_batch,
    query_from_dict,
)
from idb_query.domain.entities.schema import (
    DEFAULT_KEY_PATH,
    CollectionSchema,
    DatabaseSchema,
    IndexSchema,
)

__all__ = [
    # Queries
    "Count",
    "Delete",
    "Filter",
    "Insert",
    "Last",
    "Query",
    "RANGE_FIELD",
    "Select",
    "Update",
    "is_record_batch",
    "query_from_dict",
    # Schema
    "CollectionSchema",
    "DatabaseSchema",
    "DEFAULT_KEY_PATH",
    "IndexSchema",
    # B+Tree nodes
    "BTreeInternalNode",
    "BTreeLeafNode",
    "BTreeNode",
    "BTreeNodeHeader",
    "NodeType",
]
