"""Query Service port for declarative CRUD queries.

This inbound port defines what callers of the query layer can do and
how it fails.

Key responsibilities:
- Run select, insert, update, delete, count and last queries
- Surface every storage failure to the caller, unchanged in meaning
- Treat updates and deletes without a resolvable primary key as no-ops
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from typing import Any, Protocol

from idb_query.domain.entities import Query


class QueryError(Exception):
    """Base class for query layer failures."""


class UnsupportedPayload(QueryError):
    """Raised when insert receives neither a record nor a sequence of records."""

    def __init__(self, payload_type: str) -> None:
        super().__init__(
            f"Cannot insert a value of type '{payload_type}': "
            "expected a record or a sequence of records"
        )
        self.payload_type = payload_type


class StorageFailure(QueryError):
    """Raised when the storage engine reports an error.

    Attributes:
        operation: The engine operation that failed (e.g. "add", "cursor").
        error_name: The engine's error name (e.g. "ConstraintError").
        message: The engine's error message.
    """

    def __init__(self, operation: str, error_name: str, message: str) -> None:
        super().__init__(f"{operation} failed: {error_name}: {message}")
        self.operation = operation
        self.error_name = error_name
        self.message = message


class UnimplementedMigration(QueryError):
    """Raised when a schema upgrade starts from an existing version."""

    def __init__(self, old_version: int, new_version: int) -> None:
        super().__init__(
            f"Migration from version {old_version} to {new_version} is not implemented"
        )
        self.old_version = old_version
        self.new_version = new_version


class QueryService(Protocol):
    """Protocol for declarative query execution.

    Every operation runs in its own transaction, which is committed or
    aborted before the call returns.
    """

    @abstractmethod
    async def select(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Any]:
        """Read the records matching ``where``.

        Args:
            collection: Collection name.
            where: Equality pairs plus an optional ``range`` entry.
            limit: Maximum number of records (None for all).

        Returns:
            Matching records in the chosen access path's order.

        Raises:
            StorageFailure: If the engine fails, including mid-scan.
            ValueError: If the query is malformed.
        """
        ...

    @abstractmethod
    async def insert(self, collection: str, records: Any) -> Any:
        """Add one record or a sequence of records atomically.

        Returns:
            The records passed in.

        Raises:
            UnsupportedPayload: If ``records`` has neither shape.
            StorageFailure: If any add fails; nothing is written.
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        where: Mapping[str, Any],
        patch: Any,
        merge: bool = False,
    ) -> Any | None:
        """Upsert the record whose primary key ``where`` names.

        Returns:
            The written record, or None if no key was resolvable.
        """
        ...

    @abstractmethod
    async def delete(self, collection: str, where: Mapping[str, Any]) -> bool | None:
        """Remove the record whose primary key ``where`` names.

        Returns:
            True if a record was removed, False if none existed, None if
            no key was resolvable.
        """
        ...

    @abstractmethod
    async def count(self, collection: str) -> int:
        ...

    @abstractmethod
    async def last(self, collection: str) -> Any | None:
        """Return the greatest primary key, or None for an empty collection."""
        ...

    @abstractmethod
    async def execute(self, query: Query) -> Any:
        """Run any query object."""
        ...
