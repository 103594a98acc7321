"""Access paths chosen by the selector, and the inputs it decides from.

An access path is the concrete strategy used to satisfy a select:

    PrimaryKey   point read by primary key          O(log n)
    IndexPoint   index cursor over one index key    O(log n + matches)
    IndexRange   one cursor per caller bound        O(matches)
    FullScan     cursor over the whole collection   O(n)

Range and full scans may carry a post-filter: equality pairs checked in
memory after the scan completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from idb_query.domain.value_objects.keys import KeyPath

FilterPair = tuple[str, Any]


@dataclass(frozen=True)
class Bound:
    """A closed ``[start, end]`` interval over an index or the primary key.

    Attributes:
        start: Lower key, inclusive.
        end: Upper key, inclusive.
        index: Index name, or None for the primary key.
    """

    start: Any
    end: Any
    index: str | None = None


@dataclass(frozen=True)
class IndexDescriptor:
    """What the selector needs to know about one declared index."""

    name: str
    key_path: KeyPath
    unique: bool = False
    multi_entry: bool = False


@dataclass(frozen=True)
class CollectionDescriptor:
    """What the selector needs to know about a collection."""

    name: str
    key_path: KeyPath | None
    indexes: tuple[IndexDescriptor, ...] = ()

    def find_index(self, field_name: str) -> IndexDescriptor | None:
        """Find an index by name, falling back to its key path."""
        for index in self.indexes:
            if index.name == field_name:
                return index
        for index in self.indexes:
            if index.key_path == field_name:
                return index
        return None


@dataclass(frozen=True)
class PrimaryKey:
    """Point read by primary key."""

    value: Any
    name: str = field(default="primary_key", init=False)


@dataclass(frozen=True)
class IndexPoint:
    """Index cursor restricted to a single index key."""

    index_name: str
    key_path: KeyPath
    value: Any
    multi_entry: bool = False
    name: str = field(default="index_point", init=False)


@dataclass(frozen=True)
class IndexRange:
    """One cursor per bound, visited in caller order."""

    index_name: str | None
    bounds: tuple[Bound, ...]
    post_filter: tuple[FilterPair, ...] = ()
    name: str = field(default="index_range", init=False)


@dataclass(frozen=True)
class FullScan:
    """Cursor over the whole collection in primary key order."""

    post_filter: tuple[FilterPair, ...] = ()
    name: str = field(default="full_scan", init=False)


AccessPath = PrimaryKey | IndexPoint | IndexRange | FullScan
