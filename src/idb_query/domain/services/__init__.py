"""Domain services for the query layer.

Exports:
    - BTreeIndex: Ordered map used by the memory storage engine
    - AccessPathSelector: Chooses how a select reads its records
    - PrimaryKeyPolicy: Recognized primary key field names
    - PostFilterMode, apply_post_filter: In-memory equality filtering
"""

from idb_query.domain.services.access_path_selector import (
    DEFAULT_KEY_NAMES,
    AccessPathSelector,
    PostFilterMode,
    PrimaryKeyPolicy,
    apply_post_filter,
)
from idb_query.domain.services.btree_index import (
    DEFAULT_MAX_KEYS,
    BTreeIndex,
    TreeMetadata,
)

__all__ = [
    "AccessPathSelector",
    "BTreeIndex",
    "DEFAULT_KEY_NAMES",
    "DEFAULT_MAX_KEYS",
    "PostFilterMode",
    "PrimaryKeyPolicy",
    "TreeMetadata",
    "apply_post_filter",
]
