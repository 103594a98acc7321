"""Static schema description consumed once at connect time.

Schemas can be built directly or loaded from their dictionary form:

    {
        "name": "app",
        "version": 1,
        "schemas": [
            {
                "name": "users",
                "options": {"keyPath": "id", "autoIncrement": False},
                "indexes": [
                    {"name": "byRole", "keyPath": "role", "options": {"unique": False}},
                ],
                "data": [{"id": 1, "role": "admin"}],
            },
        ],
    }
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from idb_query.domain.value_objects import KeyPath, normalize_key_path

DEFAULT_KEY_PATH = "id"


def _option(source: Mapping[str, Any], camel: str, snake: str, default: Any) -> Any:
    if camel in source:
        return source[camel]
    return source.get(snake, default)


@dataclass(frozen=True)
class IndexSchema:
    """A secondary index declaration.

    Attributes:
        name: Index name, unique within the collection.
        key_path: Field path (dotted) or tuple of paths for compound keys.
        unique: Reject writes that would share an index key.
        multi_entry: Index each element of an array value separately.
    """

    name: str
    key_path: KeyPath
    unique: bool = False
    multi_entry: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Index name must not be empty")
        if self.multi_entry and not isinstance(self.key_path, str):
            raise ValueError(f"Index '{self.name}': multi_entry needs a single key path")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IndexSchema:
        options = data.get("options") or {}
        name = data["name"]
        return cls(
            name=name,
            key_path=normalize_key_path(_option(data, "keyPath", "key_path", name)),
            unique=bool(_option(options, "unique", "unique", data.get("unique", False))),
            multi_entry=bool(
                _option(options, "multiEntry", "multi_entry", data.get("multi_entry", False))
            ),
        )


@dataclass(frozen=True)
class CollectionSchema:
    """A collection declaration with its indexes and optional seed data.

    Attributes:
        name: Collection name.
        key_path: Primary key path, or None for out-of-line keys.
        auto_increment: Generate integer keys for records without one.
        indexes: Secondary index declarations.
        data: Seed records inserted right after the collection is created.
    """

    name: str
    key_path: KeyPath | None = DEFAULT_KEY_PATH
    auto_increment: bool = False
    indexes: tuple[IndexSchema, ...] = ()
    data: Any = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Collection name must not be empty")
        names = [index.name for index in self.indexes]
        if len(names) != len(set(names)):
            raise ValueError(f"Collection '{self.name}' declares duplicate index names")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CollectionSchema:
        options = data.get("options") or {}
        return cls(
            name=data["name"],
            key_path=normalize_key_path(
                _option(options, "keyPath", "key_path", data.get("key_path", DEFAULT_KEY_PATH))
            ),
            auto_increment=bool(
                _option(options, "autoIncrement", "auto_increment", data.get("auto_increment", False))
            ),
            indexes=tuple(
                index if isinstance(index, IndexSchema) else IndexSchema.from_mapping(index)
                for index in data.get("indexes") or ()
            ),
            data=data.get("data"),
        )


@dataclass(frozen=True)
class DatabaseSchema:
    """The full schema of one named, versioned database."""

    name: str
    version: int = 1
    collections: tuple[CollectionSchema, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Database name must not be empty")
        if isinstance(self.version, bool) or not isinstance(self.version, int) or self.version < 1:
            raise ValueError(f"Database version must be a positive integer, got {self.version!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DatabaseSchema:
        collections: Sequence[Any] = data.get("schemas") or data.get("collections") or ()
        return cls(
            name=data["name"],
            version=data.get("version", 1),
            collections=tuple(
                item if isinstance(item, CollectionSchema) else CollectionSchema.from_mapping(item)
                for item in collections
            ),
        )
