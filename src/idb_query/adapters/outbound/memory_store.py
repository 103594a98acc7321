"""In-memory collections and secondary indexes.

These structures hold the data of the memory storage engine. Every
collection keeps its records in a B+Tree keyed by primary key; every
secondary index keeps a B+Tree from index key to the sorted list of
primary keys that share it (the posting list).

Each mutation appends the inverse operation to an undo log so that the
owning transaction can roll back. Index maintenance is part of every
mutation and of every rollback, so indexes never hold stale entries.
"""

from __future__ import annotations

import copy
import math
from bisect import bisect_left, bisect_right, insort
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import partial
from itertools import islice
from typing import Any

from idb_query.domain.services import DEFAULT_MAX_KEYS, BTreeIndex
from idb_query.domain.value_objects import (
    MISSING,
    IndexKey,
    InvalidKeyError,
    KeyPath,
    KeyRange,
    KeyType,
    evaluate_key_path,
    inject_key,
)
from idb_query.ports.outbound import EngineError

UndoLog = list[Callable[[], None]]

IndexEntry = tuple[IndexKey, IndexKey]
"""(index key, primary key) position inside an index."""


def to_key(value: Any) -> IndexKey:
    """Validate a key value, reporting DataError on failure."""
    try:
        return IndexKey.of(value)
    except InvalidKeyError as exc:
        raise EngineError("DataError", str(exc)) from exc


def to_range(value: KeyRange | Any | None) -> KeyRange | None:
    """Accept a KeyRange, a single key, or None for everything."""
    if value is None or isinstance(value, KeyRange):
        return value
    try:
        return KeyRange.only(value)
    except InvalidKeyError as exc:
        raise EngineError("DataError", str(exc)) from exc


def clone(value: Any) -> Any:
    """Structured clone: mappings become plain dicts, everything is copied."""
    if isinstance(value, Mapping) and not isinstance(value, dict):
        value = dict(value)
    return copy.deepcopy(value)


class IndexData:
    """A secondary index: index key -> sorted primary keys."""

    def __init__(
        self,
        name: str,
        key_path: KeyPath,
        unique: bool = False,
        multi_entry: bool = False,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        self.name = name
        self.key_path = key_path
        self.unique = unique
        self.multi_entry = multi_entry
        self.tree = BTreeIndex(f"index:{name}", max_keys)

    def index_keys(self, record: Any) -> list[IndexKey]:
        """Keys under which a record is indexed.

        A missing or invalid value is not indexed. A multi-entry index
        indexes every valid, distinct element of an array value.
        """
        value = evaluate_key_path(record, self.key_path)
        if value is MISSING:
            return []
        if self.multi_entry and isinstance(value, list):
            return sorted({IndexKey.of(item) for item in value if IndexKey.is_valid(item)})
        if not IndexKey.is_valid(value):
            return []
        return [IndexKey.of(value)]

    def conflict(self, keys: list[IndexKey], primary_key: IndexKey) -> IndexKey | None:
        """Return the first key another record already holds in a unique index."""
        if not self.unique:
            return None
        for key in keys:
            postings = self.tree.search(key)
            if postings and any(other != primary_key for other in postings):
                return key
        return None

    def add(self, keys: list[IndexKey], primary_key: IndexKey) -> None:
        for key in keys:
            postings = self.tree.search(key)
            if postings is None:
                self.tree.insert(key, [primary_key])
            else:
                insort(postings, primary_key)

    def remove(self, keys: list[IndexKey], primary_key: IndexKey) -> None:
        for key in keys:
            postings = self.tree.search(key)
            if postings is None:
                continue
            pos = bisect_left(postings, primary_key)
            if pos < len(postings) and postings[pos] == primary_key:
                postings.pop(pos)
            if not postings:
                self.tree.delete(key)

    def entries(self, key_range: KeyRange | None = None) -> Iterator[IndexEntry]:
        """Yield (index key, primary key) pairs in index order."""
        for key, postings in self.tree.scan(key_range):
            for primary_key in postings:
                yield key, primary_key

    def next_entry(self, key_range: KeyRange | None, after: IndexEntry | None) -> IndexEntry | None:
        """Return the entry following ``after`` inside the range, or None.

        Entries are ordered by index key, then by primary key.
        """
        if after is None:
            found = self.tree.first(key_range)
        else:
            index_key, primary_key = after
            postings = self.tree.search(index_key)
            if postings and (key_range is None or key_range.includes(index_key)):
                pos = bisect_right(postings, primary_key)
                if pos < len(postings):
                    return index_key, postings[pos]
            found = self.tree.first(key_range, after=index_key)

        if found is None:
            return None
        index_key, postings = found
        return index_key, postings[0]

    def count(self, key_range: KeyRange | None = None) -> int:
        return sum(len(postings) for _, postings in self.tree.scan(key_range))


class StoreData:
    """A collection: primary key -> record, plus its indexes.

    Records handed to ``write`` are owned by the store from then on;
    callers clone them first.
    """

    def __init__(
        self,
        name: str,
        key_path: KeyPath | None = None,
        auto_increment: bool = False,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        self.name = name
        self.key_path = key_path
        self.auto_increment = auto_increment
        self.max_keys = max_keys
        self.records = BTreeIndex(f"store:{name}", max_keys)
        self.indexes: dict[str, IndexData] = {}
        self.next_key = 1

    def create_index(
        self,
        name: str,
        key_path: KeyPath,
        unique: bool = False,
        multi_entry: bool = False,
    ) -> IndexData:
        """Declare an index and populate it from the existing records.

        Raises:
            EngineError: ConstraintError if the name is taken or existing
                records violate a unique index.
        """
        if name in self.indexes:
            raise EngineError("ConstraintError", f"Index '{name}' already exists on '{self.name}'")

        index = IndexData(name, key_path, unique, multi_entry, self.max_keys)
        for primary_key, record in self.records.range_scan():
            keys = index.index_keys(record)
            if index.conflict(keys, primary_key) is not None:
                raise EngineError(
                    "ConstraintError",
                    f"Existing records of '{self.name}' violate unique index '{name}'",
                )
            index.add(keys, primary_key)

        self.indexes[name] = index
        return index

    def lookup(self, primary_key: IndexKey) -> Any:
        """Return the stored record (not a copy), or MISSING."""
        if primary_key in self.records:
            return self.records.search(primary_key)
        return MISSING

    def _resolve_key(self, record: Any, key: Any) -> Any:
        if self.key_path is None:
            if key is not None:
                return key
            if self.auto_increment:
                return self.next_key
            raise EngineError("DataError", f"Collection '{self.name}' needs an explicit key")

        inline = evaluate_key_path(record, self.key_path)
        if key is not None:
            if inline is MISSING:
                self._inject(record, key)
            elif inline != key:
                raise EngineError(
                    "DataError",
                    f"Key {key!r} differs from {inline!r} at key path {self.key_path!r}",
                )
            return key

        if inline is not MISSING:
            return inline
        if self.auto_increment and isinstance(record, dict):
            key = self.next_key
            self._inject(record, key)
            return key
        raise EngineError("DataError", f"Record has no key at key path {self.key_path!r}")

    def _inject(self, record: Any, key: Any) -> None:
        if not isinstance(record, dict) or not isinstance(self.key_path, str) or not self.key_path:
            raise EngineError("DataError", f"Cannot set key at key path {self.key_path!r}")
        try:
            inject_key(record, self.key_path, key)
        except InvalidKeyError as exc:
            raise EngineError("DataError", str(exc)) from exc

    def write(self, record: Any, key: Any, overwrite: bool, undo: UndoLog) -> Any:
        """Store a record, maintaining every index.

        Args:
            record: The record to store.
            key: Explicit primary key, or None to use the key path or generator.
            overwrite: Replace an existing record (put) instead of failing (add).
            undo: Undo log receiving the inverse operations.

        Returns:
            The primary key the record was stored under.

        Raises:
            EngineError: DataError for a missing or invalid key,
                ConstraintError for an existing key or a unique index clash.
        """
        primary_key = to_key(self._resolve_key(record, key))
        existing = self.lookup(primary_key)
        if existing is not MISSING and not overwrite:
            raise EngineError(
                "ConstraintError",
                f"Key {primary_key.to_python()!r} already exists in '{self.name}'",
            )

        new_keys = {name: index.index_keys(record) for name, index in self.indexes.items()}
        for name, index in self.indexes.items():
            clash = index.conflict(new_keys[name], primary_key)
            if clash is not None:
                raise EngineError(
                    "ConstraintError",
                    f"Unique index '{name}' already holds key {clash.to_python()!r}",
                )

        undo.append(partial(self.restore, primary_key, existing))
        undo.append(partial(setattr, self, "next_key", self.next_key))
        self._replace(primary_key, existing, record, new_keys)

        if (
            primary_key.key_type == KeyType.NUMBER
            and math.isfinite(primary_key.value)
            and primary_key.value >= self.next_key
        ):
            self.next_key = math.floor(primary_key.value) + 1

        return primary_key.to_python()

    def _replace(
        self,
        primary_key: IndexKey,
        existing: Any,
        record: Any,
        new_keys: dict[str, list[IndexKey]] | None = None,
    ) -> None:
        if existing is not MISSING:
            for index in self.indexes.values():
                index.remove(index.index_keys(existing), primary_key)

        if record is MISSING:
            self.records.delete(primary_key)
            return

        self.records.upsert(primary_key, record)
        for name, index in self.indexes.items():
            keys = new_keys[name] if new_keys is not None else index.index_keys(record)
            index.add(keys, primary_key)

    def restore(self, primary_key: IndexKey, previous: Any) -> None:
        """Put back the record a key held before a mutation (MISSING = none)."""
        self._replace(primary_key, self.lookup(primary_key), previous)

    def remove(self, primary_key: IndexKey, undo: UndoLog) -> bool:
        """Delete a record; return True if one existed."""
        existing = self.lookup(primary_key)
        if existing is MISSING:
            return False
        undo.append(partial(self.restore, primary_key, existing))
        self._replace(primary_key, existing, MISSING)
        return True

    def clear(self, undo: UndoLog) -> None:
        for primary_key, record in self.records.range_scan():
            undo.append(partial(self.restore, primary_key, record))
        self.records.clear()
        for index in self.indexes.values():
            index.tree.clear()

    def count(self, key_range: KeyRange | None = None) -> int:
        return sum(1 for _ in self.records.scan(key_range))

    def values(self, key_range: KeyRange | None = None, limit: int | None = None) -> list[Any]:
        entries = islice(self.records.scan(key_range), limit or None)
        return [clone(record) for _, record in entries]

    def keys(self, key_range: KeyRange | None = None, limit: int | None = None) -> list[Any]:
        entries = islice(self.records.scan(key_range), limit or None)
        return [primary_key.to_python() for primary_key, _ in entries]


@dataclass
class DatabaseData:
    """A named, versioned set of collections."""

    name: str
    version: int = 0
    stores: dict[str, StoreData] = field(default_factory=dict)
