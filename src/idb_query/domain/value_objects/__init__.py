"""Value objects for the query layer domain.

Value objects are immutable types that represent domain concepts.
They have no identity - two value objects with the same attributes are equal.

Exports:
    Keys:
        - IndexKey: Validated, totally ordered key
        - KeyType: Key types in sort order
        - KeyRange: Interval over keys
        - evaluate_key_path, inject_key: Key path helpers
        - MISSING: Marker for unresolved key paths

    Access paths:
        - PrimaryKey, IndexPoint, IndexRange, FullScan
        - Bound: Caller supplied range bound
        - CollectionDescriptor, IndexDescriptor: Selector inputs

    Transactions:
        - TransactionMode: READ_ONLY, READ_WRITE, VERSION_CHANGE
        - TransactionState: Transaction lifecycle states
"""

from idb_query.domain.value_objects.access_path import (
    AccessPath,
    Bound,
    CollectionDescriptor,
    FilterPair,
    FullScan,
    IndexDescriptor,
    IndexPoint,
    IndexRange,
    PrimaryKey,
)
from idb_query.domain.value_objects.identifiers import (
    INVALID_NODE_ID,
    NodeId,
    TransactionId,
)
from idb_query.domain.value_objects.keys import (
    MISSING,
    IndexKey,
    InvalidKeyError,
    KeyPath,
    KeyRange,
    KeyType,
    evaluate_key_path,
    inject_key,
    normalize_key_path,
)
from idb_query.domain.value_objects.transaction_types import (
    TransactionMode,
    TransactionState,
)

__all__ = [
    # Keys
    "IndexKey",
    "InvalidKeyError",
    "KeyPath",
    "KeyRange",
    "KeyType",
    "MISSING",
    "evaluate_key_path",
    "inject_key",
    "normalize_key_path",
    # Access paths
    "AccessPath",
    "Bound",
    "CollectionDescriptor",
    "FilterPair",
    "FullScan",
    "IndexDescriptor",
    "IndexPoint",
    "IndexRange",
    "PrimaryKey",
    # Identifiers
    "NodeId",
    "TransactionId",
    "INVALID_NODE_ID",
    # Transaction types
    "TransactionMode",
    "TransactionState",
]
