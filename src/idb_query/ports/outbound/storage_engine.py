"""Storage Engine port for the underlying ordered key-value engine.

This outbound port defines the contract the query layer needs from the
engine. The engine is event based: every operation returns a request
immediately and completes later by setting ``result`` or ``error`` and
invoking ``on_success`` or ``on_error``. Cursor requests complete once
per step.

Key responsibilities:
- Open versioned databases and run the upgrade callback
- Declare collections and indexes during an upgrade
- Scope reads and writes to transactions
- Maintain indexes on every write, delete and rollback

Error names follow a small fixed vocabulary:

    ConstraintError         duplicate primary key or unique index key
    DataError               invalid key or key path
    NotFoundError           unknown collection or index
    ReadOnlyError           write in a read-only transaction
    TransactionInactiveError request on a finished transaction
    InvalidStateError       operation not allowed in the current state
    VersionError            open with a version lower than the stored one
    AbortError              transaction was aborted
    InvalidAccessError      invalid declaration or transaction scope
    UnknownError            unexpected failure inside the engine
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from idb_query.domain.value_objects import KeyPath, KeyRange, TransactionMode


class EngineError(Exception):
    """An error value reported by the engine.

    Attributes:
        name: Error name from the engine vocabulary.
        message: Human readable description.
    """

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name
        self.message = message


class EngineRequest(Protocol):
    """A pending engine operation.

    ``ready_state`` is ``"pending"`` until the operation completes and
    ``"done"`` afterwards. Cursor requests go back to ``"pending"`` on
    every ``continue_()``.
    """

    ready_state: str
    result: Any
    error: BaseException | None
    on_success: Callable[[], None] | None
    on_error: Callable[[], None] | None


@dataclass(frozen=True)
class UpgradeEvent:
    """Passed to the upgrade callback while a database version changes."""

    connection: EngineConnection
    old_version: int
    new_version: int


UpgradeCallback = Callable[[UpgradeEvent], None]


class EngineCursor(Protocol):
    """A position inside an ordered iteration."""

    key: Any
    primary_key: Any
    value: Any

    @abstractmethod
    def continue_(self) -> None:
        """Advance; the owning request completes again with the next
        cursor, or with None when the range is exhausted."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the cursor. The owning request will not complete again."""
        ...


class EngineIndex(Protocol):
    """A secondary index inside a transaction."""

    name: str
    key_path: KeyPath
    unique: bool
    multi_entry: bool

    @abstractmethod
    def get(self, key: Any) -> EngineRequest:
        """First record whose index key equals ``key`` (None if none)."""
        ...

    @abstractmethod
    def count(self, key_range: KeyRange | None = None) -> EngineRequest:
        ...

    @abstractmethod
    def get_all(self, key_range: KeyRange | None = None, count: int | None = None) -> EngineRequest:
        ...

    @abstractmethod
    def open_cursor(self, key_range: KeyRange | None = None) -> EngineRequest:
        """Cursor over index entries in (index key, primary key) order."""
        ...


class EngineObjectStore(Protocol):
    """A collection inside a transaction."""

    name: str
    key_path: KeyPath | None
    auto_increment: bool
    index_names: list[str]

    @abstractmethod
    def create_index(
        self,
        name: str,
        key_path: KeyPath,
        unique: bool = False,
        multi_entry: bool = False,
    ) -> EngineIndex:
        """Declare an index. Only valid during an upgrade."""
        ...

    @abstractmethod
    def index(self, name: str) -> EngineIndex:
        ...

    @abstractmethod
    def get(self, key: Any) -> EngineRequest:
        ...

    @abstractmethod
    def add(self, value: Any, key: Any = None) -> EngineRequest:
        """Insert a new record; fails with ConstraintError if the key exists."""
        ...

    @abstractmethod
    def put(self, value: Any, key: Any = None) -> EngineRequest:
        """Insert or replace a record."""
        ...

    @abstractmethod
    def delete(self, key: Any) -> EngineRequest:
        """Remove a record; result is True if one existed."""
        ...

    @abstractmethod
    def clear(self) -> EngineRequest:
        ...

    @abstractmethod
    def count(self, key_range: KeyRange | None = None) -> EngineRequest:
        ...

    @abstractmethod
    def get_all(self, key_range: KeyRange | None = None, count: int | None = None) -> EngineRequest:
        ...

    @abstractmethod
    def get_all_keys(
        self, key_range: KeyRange | None = None, count: int | None = None
    ) -> EngineRequest:
        ...

    @abstractmethod
    def open_cursor(self, key_range: KeyRange | None = None) -> EngineRequest:
        """Cursor over records in primary key order."""
        ...


class EngineTransaction(Protocol):
    """A transaction scoped to a fixed set of collections."""

    mode: TransactionMode
    error: BaseException | None

    @property
    @abstractmethod
    def active(self) -> bool:
        """True while the transaction accepts requests."""
        ...

    @abstractmethod
    def object_store(self, name: str) -> EngineObjectStore:
        ...

    @abstractmethod
    def commit(self) -> EngineRequest:
        """Complete once every queued request has run. Fails, rolling
        back, if any write request of the transaction failed."""
        ...

    @abstractmethod
    def abort(self) -> None:
        """Roll back every write and release every cursor."""
        ...


class EngineConnection(Protocol):
    """An open database."""

    name: str
    version: int

    @property
    @abstractmethod
    def collection_names(self) -> list[str]:
        ...

    @abstractmethod
    def create_collection(
        self,
        name: str,
        key_path: KeyPath | None = None,
        auto_increment: bool = False,
    ) -> EngineObjectStore:
        """Declare a collection. Only valid during an upgrade."""
        ...

    @abstractmethod
    def delete_collection(self, name: str) -> None:
        """Drop a collection. Only valid during an upgrade."""
        ...

    @abstractmethod
    def transaction(
        self,
        names: str | Sequence[str],
        mode: TransactionMode = TransactionMode.READ_ONLY,
    ) -> EngineTransaction:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class StorageEngine(Protocol):
    """Factory for engine connections."""

    @abstractmethod
    def open(
        self,
        name: str,
        version: int = 1,
        on_upgrade_needed: UpgradeCallback | None = None,
    ) -> EngineRequest:
        """Open a database; result is an EngineConnection.

        When the stored version is lower than ``version`` the upgrade
        callback runs first. An exception raised by the callback rolls
        the upgrade back and becomes the request's error unchanged.
        """
        ...

    @abstractmethod
    def delete_database(self, name: str) -> EngineRequest:
        ...
