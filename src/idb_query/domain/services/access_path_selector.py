"""Access-path selection and in-memory post-filtering.

The selector picks the cheapest access path using only what the filter
and the collection declaration tell it; there are no cost statistics.

    1. no constraint                       -> FullScan
    2. a range                             -> IndexRange (+ post-filter)
    3. one pair naming a primary key field -> PrimaryKey
    4. one pair naming a declared index    -> IndexPoint
    5. anything else                       -> FullScan (+ post-filter)

Pairs whose value is not a valid key can never be served by a key or
index lookup; they fall through to the post-filter.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from idb_query.domain.entities.query import Filter
from idb_query.domain.value_objects import (
    MISSING,
    AccessPath,
    CollectionDescriptor,
    FilterPair,
    FullScan,
    IndexKey,
    IndexPoint,
    IndexRange,
    PrimaryKey,
    evaluate_key_path,
)

DEFAULT_KEY_NAMES: tuple[str, ...] = ("id", "key")


class PostFilterMode(str, Enum):
    """How the post-filter combines its equality pairs."""

    ALL = "all"
    """Every pair must match."""

    FIRST = "first"
    """Only the first pair is checked (legacy behavior)."""


class PrimaryKeyPolicy:
    """The field names recognized as primary key aliases.

    Resolution tries the names in order; ``None`` means absent, while
    falsy keys such as ``0`` or ``""`` are valid.
    """

    def __init__(self, key_names: Sequence[str] = DEFAULT_KEY_NAMES) -> None:
        if not key_names:
            raise ValueError("At least one primary key field name is required")
        self.key_names = tuple(key_names)

    def is_key_field(self, name: str) -> bool:
        return name in self.key_names

    def resolve(self, where: Mapping[str, Any] | None) -> Any | None:
        """Return the primary key named by ``where``, or None."""
        if not isinstance(where, Mapping):
            return None
        for name in self.key_names:
            value = where.get(name)
            if value is not None:
                return value
        return None


class AccessPathSelector:
    """Chooses an access path for a select."""

    def __init__(self, key_policy: PrimaryKeyPolicy | None = None) -> None:
        self._key_policy = key_policy or PrimaryKeyPolicy()

    @property
    def key_policy(self) -> PrimaryKeyPolicy:
        return self._key_policy

    def select_path(self, collection: CollectionDescriptor, where: Filter) -> AccessPath:
        """Decide how to read the records matching ``where``.

        Args:
            collection: Declared layout of the target collection.
            where: The normalized filter.

        Returns:
            The chosen access path.
        """
        pairs = where.pairs

        if where.is_empty:
            return FullScan()

        if where.bounds is not None:
            return IndexRange(
                index_name=where.range_index,
                bounds=where.bounds,
                post_filter=pairs,
            )

        if len(pairs) == 1:
            (field_name, value), = pairs
            if IndexKey.is_valid(value):
                if self._key_policy.is_key_field(field_name):
                    return PrimaryKey(value=value)
                index = collection.find_index(field_name)
                if index is not None:
                    return IndexPoint(
                        index_name=index.name,
                        key_path=index.key_path,
                        value=value,
                        multi_entry=index.multi_entry,
                    )

        return FullScan(post_filter=pairs)


def _same_value(left: Any, right: Any) -> bool:
    # True == 1 in Python; booleans only equal booleans.
    return isinstance(left, bool) == isinstance(right, bool) and left == right


def _matches(record: Any, field_name: str, value: Any) -> bool:
    """Compare the field at a dotted path, as index lookups resolve it."""
    found = evaluate_key_path(record, field_name)
    return found is not MISSING and _same_value(found, value)


def apply_post_filter(
    records: Iterable[Any],
    pairs: Sequence[FilterPair],
    mode: PostFilterMode = PostFilterMode.ALL,
) -> list[Any]:
    """Keep the records that satisfy the equality pairs.

    With ``PostFilterMode.FIRST`` only ``pairs[0]`` is checked.
    """
    if not pairs:
        return list(records)
    checked = pairs if mode == PostFilterMode.ALL else pairs[:1]
    return [
        record
        for record in records
        if all(_matches(record, field_name, value) for field_name, value in checked)
    ]
