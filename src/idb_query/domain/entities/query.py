"""Declarative query objects.

A query is an ephemeral request built by the caller and consumed by a
single execution. Queries can be built directly or from the dictionary
form used by clients:

    {"from": "users", "where": {"role": "admin"}, "limit": 10}
    {"on": "users", "set": [{"id": 1}, {"id": 2}]}
    {"on": "users", "where": {"id": 1}, "set": {"name": "Ann"}, "merge": True}
    {"on": "users", "where": {"id": 1}}

The reserved ``range`` entry of ``where`` holds one bound or a list of
bounds: ``{"start": 1, "end": 5, "index": "byAge"}``. Without ``index``
a bound targets the primary key.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from idb_query.domain.value_objects import Bound, FilterPair

RANGE_FIELD = "range"


def _parse_bound(item: Any) -> Bound:
    if isinstance(item, Bound):
        return item
    if not isinstance(item, Mapping):
        raise ValueError(f"Range bound must be a mapping, got {type(item).__name__}")
    missing = [name for name in ("start", "end") if name not in item]
    if missing:
        raise ValueError(f"Range bound is missing {', '.join(missing)}")
    return Bound(start=item["start"], end=item["end"], index=item.get("index"))


@dataclass(frozen=True)
class Filter:
    """Normalized ``where`` clause.

    Attributes:
        pairs: Equality constraints in caller insertion order.
        bounds: Range bounds in caller order, or None if no range was given.
    """

    pairs: tuple[FilterPair, ...] = ()
    bounds: tuple[Bound, ...] | None = None

    def __post_init__(self) -> None:
        if self.bounds is not None:
            indexes = {bound.index for bound in self.bounds}
            if len(indexes) > 1:
                raise ValueError(f"All range bounds must target the same index, got {indexes}")

    @classmethod
    def from_mapping(cls, where: Mapping[str, Any] | None) -> Filter:
        """Split a where mapping into equality pairs and range bounds."""
        if where is None:
            return cls()
        if not isinstance(where, Mapping):
            raise ValueError(f"where must be a mapping, got {type(where).__name__}")

        pairs = tuple((name, value) for name, value in where.items() if name != RANGE_FIELD)
        raw = where.get(RANGE_FIELD)
        if raw is None:
            return cls(pairs=pairs)
        if isinstance(raw, (Mapping, Bound)):
            raw = [raw]
        return cls(pairs=pairs, bounds=tuple(_parse_bound(item) for item in raw))

    @property
    def range_index(self) -> str | None:
        """Index targeted by the bounds (None for the primary key)."""
        return self.bounds[0].index if self.bounds else None

    @property
    def is_empty(self) -> bool:
        return not self.pairs and self.bounds is None


def _check_collection(name: Any) -> None:
    if not isinstance(name, str) or not name:
        raise ValueError(f"Collection name must be a non-empty string, got {name!r}")


@dataclass
class Select:
    """Read records, optionally filtered and limited."""

    collection: str
    where: Filter | Mapping[str, Any] = field(default_factory=Filter)
    limit: int | None = None

    def __post_init__(self) -> None:
        _check_collection(self.collection)
        if not isinstance(self.where, Filter):
            self.where = Filter.from_mapping(self.where)
        if self.limit is not None:
            if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
                raise ValueError(f"limit must be a positive integer, got {self.limit!r}")

    @property
    def filter(self) -> Filter:
        assert isinstance(self.where, Filter)
        return self.where


@dataclass
class Insert:
    """Add one record or an ordered sequence of records."""

    collection: str
    records: Any

    def __post_init__(self) -> None:
        _check_collection(self.collection)


@dataclass
class Update:
    """Write a record identified by primary key, replacing or merging it."""

    collection: str
    where: Mapping[str, Any]
    patch: Any
    merge: bool = False

    def __post_init__(self) -> None:
        _check_collection(self.collection)


@dataclass
class Delete:
    """Remove a record identified by primary key."""

    collection: str
    where: Mapping[str, Any]

    def __post_init__(self) -> None:
        _check_collection(self.collection)


@dataclass
class Count:
    """Count the records of a collection."""

    collection: str

    def __post_init__(self) -> None:
        _check_collection(self.collection)


@dataclass
class Last:
    """Fetch the greatest primary key of a collection."""

    collection: str

    def __post_init__(self) -> None:
        _check_collection(self.collection)


Query = Select | Insert | Update | Delete | Count | Last


def _collection_of(body: Mapping[str, Any]) -> str:
    for name in ("from", "on", "into", "collection"):
        if name in body:
            return body[name]
    raise ValueError("Query names no collection (expected 'from', 'on' or 'into')")


def query_from_dict(operation: str, body: Mapping[str, Any]) -> Query:
    """Build a query from its dictionary form.

    Args:
        operation: One of select, insert, update, delete, count, last.
        body: The declarative query.

    Raises:
        ValueError: If the operation is unknown or the body is malformed.
    """
    collection = _collection_of(body)
    where = body.get("where") or {}

    if operation == "select":
        return Select(collection=collection, where=where, limit=body.get("limit"))
    if operation == "insert":
        records = body["set"] if "set" in body else body.get("records")
        return Insert(collection=collection, records=records)
    if operation == "update":
        patch = body["set"] if "set" in body else body.get("patch")
        return Update(
            collection=collection,
            where=where,
            patch=patch,
            merge=bool(body.get("merge", False)),
        )
    if operation == "delete":
        return Delete(collection=collection, where=where)
    if operation == "count":
        return Count(collection=collection)
    if operation == "last":
        return Last(collection=collection)
    raise ValueError(f"Unknown query operation: {operation!r}")


def is_record_batch(payload: Any) -> bool:
    """Return True for a non-string sequence."""
    return isinstance(payload, Sequence) and not isinstance(payload, (str, bytes, bytearray))
