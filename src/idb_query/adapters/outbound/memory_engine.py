"""In-process implementation of the StorageEngine port.

The engine mimics an event based embedded object store: every operation
returns a request immediately, and the request completes later on the
running asyncio loop. Requests of one transaction run in the order they
were issued; a commit completes after every request issued before it.

Failure model:
- Structural misuse (unknown collection, write in a read-only
  transaction, request on a finished transaction) raises EngineError
  synchronously.
- Data errors (invalid key, duplicate key, unique index clash) fail the
  request, then abort its transaction: every write is rolled back, the
  requests still queued fail with AbortError and the commit fails with
  the original error.

Databases, collections and indexes live in memory only.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from idb_query.adapters.outbound.memory_store import (
    DatabaseData,
    IndexData,
    IndexEntry,
    StoreData,
    UndoLog,
    clone,
    to_key,
    to_range,
)
from idb_query.domain.services import DEFAULT_MAX_KEYS
from idb_query.domain.value_objects import (
    MISSING,
    KeyPath,
    KeyRange,
    TransactionId,
    TransactionMode,
    TransactionState,
    normalize_key_path,
)
from idb_query.ports.outbound import EngineError, UpgradeCallback, UpgradeEvent


@dataclass(frozen=True)
class EngineStats:
    """Point-in-time engine statistics."""

    databases: int
    active_transactions: int
    active_cursors: int
    committed_total: int
    aborted_total: int


class MemoryRequest:
    """A request that completes once, or once per step for cursors."""

    def __init__(self, source: Any = None, transaction: MemoryTransaction | None = None) -> None:
        self.source = source
        self.transaction = transaction
        self.ready_state = "pending"
        self.result: Any = None
        self.error: BaseException | None = None
        self.on_success: Callable[[], None] | None = None
        self.on_error: Callable[[], None] | None = None
        self.cancelled = False

    def succeed(self, result: Any) -> None:
        self.ready_state = "done"
        self.result = result
        self.error = None
        if self.on_success is not None:
            self.on_success()

    def fail(self, error: BaseException) -> None:
        self.ready_state = "done"
        self.result = None
        self.error = error
        if self.on_error is not None:
            self.on_error()


class MemoryCursor:
    """Cursor over a collection in primary key order."""

    def __init__(self, source: Any, request: MemoryRequest, key_range: KeyRange | None) -> None:
        self.source = source
        self.request = request
        self.key: Any = None
        self.primary_key: Any = None
        self.value: Any = None
        self._range = key_range
        self._position: Any = None
        self._closed = False

    @property
    def transaction(self) -> MemoryTransaction:
        return self.source.transaction

    @property
    def closed(self) -> bool:
        return self._closed

    def _seek(self) -> bool:
        found = self.source.data.records.first(self._range, after=self._position)
        if found is None:
            return False
        primary_key, record = found
        self._position = primary_key
        self.key = self.primary_key = primary_key.to_python()
        self.value = clone(record)
        return True

    def step(self) -> MemoryCursor | None:
        """Move to the next entry; release the cursor when exhausted."""
        if self._seek():
            return self
        self.key = self.primary_key = self.value = None
        self._release()
        return None

    def continue_(self) -> None:
        if self._closed:
            raise EngineError("InvalidStateError", "Cursor is closed")
        if self.request.ready_state != "done":
            raise EngineError("InvalidStateError", "Cursor is already advancing")
        self.transaction.enqueue(self.request, self.step)
        self.request.ready_state = "pending"

    def close(self) -> None:
        if self._closed:
            return
        self.request.cancelled = True
        self._release()

    def _release(self) -> None:
        self._closed = True
        self.transaction.cursors.discard(self)


class MemoryIndexCursor(MemoryCursor):
    """Cursor over an index in (index key, primary key) order."""

    def _seek(self) -> bool:
        found = self.source.data.next_entry(self._range, self._position)
        if found is None:
            return False
        index_key, primary_key = found
        self._position = found
        self.key = index_key.to_python()
        self.primary_key = primary_key.to_python()
        self.value = clone(self.source.store.data.lookup(primary_key))
        return True


class MemoryIndex:
    """Transaction-bound view of a secondary index."""

    def __init__(self, store: MemoryObjectStore, data: IndexData) -> None:
        self.store = store
        self.data = data

    @property
    def transaction(self) -> MemoryTransaction:
        return self.store.transaction

    @property
    def name(self) -> str:
        return self.data.name

    @property
    def key_path(self) -> KeyPath:
        return self.data.key_path

    @property
    def unique(self) -> bool:
        return self.data.unique

    @property
    def multi_entry(self) -> bool:
        return self.data.multi_entry

    def _record(self, entry: IndexEntry | None) -> Any:
        if entry is None:
            return None
        return clone(self.store.data.lookup(entry[1]))

    def get(self, key: Any) -> MemoryRequest:
        return self.transaction.request(
            lambda: self._record(self.data.next_entry(to_range(key), None)), self
        )

    def count(self, key_range: KeyRange | None = None) -> MemoryRequest:
        return self.transaction.request(lambda: self.data.count(to_range(key_range)), self)

    def get_all(self, key_range: KeyRange | None = None, count: int | None = None) -> MemoryRequest:
        def operation() -> list[Any]:
            records = []
            for _, primary_key in self.data.entries(to_range(key_range)):
                if count and len(records) >= count:
                    break
                records.append(clone(self.store.data.lookup(primary_key)))
            return records

        return self.transaction.request(operation, self)

    def open_cursor(self, key_range: KeyRange | None = None) -> MemoryRequest:
        return self.transaction.open_cursor(MemoryIndexCursor, self, key_range)


class MemoryObjectStore:
    """Transaction-bound view of a collection."""

    def __init__(self, transaction: MemoryTransaction, data: StoreData) -> None:
        self.transaction = transaction
        self.data = data

    @property
    def name(self) -> str:
        return self.data.name

    @property
    def key_path(self) -> KeyPath | None:
        return self.data.key_path

    @property
    def auto_increment(self) -> bool:
        return self.data.auto_increment

    @property
    def index_names(self) -> list[str]:
        return sorted(self.data.indexes)

    def create_index(
        self,
        name: str,
        key_path: KeyPath | Sequence[str],
        unique: bool = False,
        multi_entry: bool = False,
    ) -> MemoryIndex:
        if self.transaction.mode != TransactionMode.VERSION_CHANGE:
            raise EngineError("InvalidStateError", "Indexes can only be created during an upgrade")
        self.transaction.check_active()
        key_path = normalize_key_path(key_path)
        if multi_entry and not isinstance(key_path, str):
            raise EngineError("InvalidAccessError", "A multi-entry index needs a single key path")
        return MemoryIndex(self, self.data.create_index(name, key_path, unique, multi_entry))

    def index(self, name: str) -> MemoryIndex:
        self.transaction.check_active()
        data = self.data.indexes.get(name)
        if data is None:
            raise EngineError("NotFoundError", f"No index '{name}' on '{self.name}'")
        return MemoryIndex(self, data)

    def _check_writable(self) -> None:
        if not self.transaction.mode.can_write:
            raise EngineError("ReadOnlyError", "The transaction is read-only")

    def get(self, key: Any) -> MemoryRequest:
        def operation() -> Any:
            record = self.data.lookup(to_key(key))
            return None if record is MISSING else clone(record)

        return self.transaction.request(operation, self)

    def _write(self, value: Any, key: Any, overwrite: bool) -> MemoryRequest:
        self._check_writable()
        record = clone(value)
        undo = self.transaction.undo
        return self.transaction.request(
            lambda: self.data.write(record, key, overwrite, undo), self
        )

    def add(self, value: Any, key: Any = None) -> MemoryRequest:
        return self._write(value, key, overwrite=False)

    def put(self, value: Any, key: Any = None) -> MemoryRequest:
        return self._write(value, key, overwrite=True)

    def delete(self, key: Any) -> MemoryRequest:
        self._check_writable()
        return self.transaction.request(
            lambda: self.data.remove(to_key(key), self.transaction.undo), self
        )

    def clear(self) -> MemoryRequest:
        self._check_writable()
        return self.transaction.request(lambda: self.data.clear(self.transaction.undo), self)

    def count(self, key_range: KeyRange | None = None) -> MemoryRequest:
        return self.transaction.request(lambda: self.data.count(to_range(key_range)), self)

    def get_all(self, key_range: KeyRange | None = None, count: int | None = None) -> MemoryRequest:
        return self.transaction.request(
            lambda: self.data.values(to_range(key_range), count), self
        )

    def get_all_keys(
        self, key_range: KeyRange | None = None, count: int | None = None
    ) -> MemoryRequest:
        return self.transaction.request(
            lambda: self.data.keys(to_range(key_range), count), self
        )

    def open_cursor(self, key_range: KeyRange | None = None) -> MemoryRequest:
        return self.transaction.open_cursor(MemoryCursor, self, key_range)


class MemoryTransaction:
    """A transaction over a fixed set of collections.

    ``names`` of None scopes the transaction to every collection; only
    upgrade transactions use it.
    """

    def __init__(
        self,
        engine: MemoryStorageEngine,
        connection: MemoryConnection,
        txn_id: TransactionId,
        names: frozenset[str] | None,
        mode: TransactionMode,
    ) -> None:
        self.id = txn_id
        self.mode = mode
        self.state = TransactionState.ACTIVE
        self.error: BaseException | None = None
        self.undo: UndoLog = []
        self.cursors: set[MemoryCursor] = set()
        self.on_abort: Callable[[], None] | None = None
        self.connection = connection
        self._engine = engine
        self._names = names

    @property
    def active(self) -> bool:
        return self.state.accepts_requests()

    def check_active(self) -> None:
        if not self.active:
            raise EngineError(
                "TransactionInactiveError",
                f"Transaction {self.id} is {self.state.name.lower()}",
            )

    def object_store(self, name: str) -> MemoryObjectStore:
        self.check_active()
        data = self.connection.data.stores.get(name)
        if data is None or (self._names is not None and name not in self._names):
            raise EngineError("NotFoundError", f"Collection '{name}' is not in this transaction")
        return MemoryObjectStore(self, data)

    def enqueue(self, request: MemoryRequest, operation: Callable[[], Any]) -> None:
        """Schedule an operation to complete ``request`` on the loop."""
        self.check_active()
        asyncio.get_running_loop().call_soon(self._run, request, operation)

    def request(self, operation: Callable[[], Any], source: Any) -> MemoryRequest:
        request = MemoryRequest(source, self)
        self.enqueue(request, operation)
        return request

    def open_cursor(
        self,
        cursor_type: type[MemoryCursor],
        source: Any,
        key_range: KeyRange | None,
    ) -> MemoryRequest:
        request = MemoryRequest(source, self)
        bounds = to_range(key_range)
        cursor = cursor_type(source, request, bounds)
        self.enqueue(request, cursor.step)
        self.cursors.add(cursor)
        return request

    def _run(self, request: MemoryRequest, operation: Callable[[], Any]) -> None:
        if request.cancelled:
            return
        if self.state == TransactionState.ABORTED:
            request.fail(EngineError("AbortError", f"Transaction {self.id} was aborted"))
            return

        try:
            result = operation()
        except EngineError as exc:
            error: EngineError = exc
        except Exception as exc:
            error = EngineError("UnknownError", str(exc))
            error.__cause__ = exc
        else:
            request.succeed(result)
            return

        request.fail(error)
        self._abort(error)

    def commit(self) -> MemoryRequest:
        self.check_active()
        self.state = TransactionState.COMMITTING
        request = MemoryRequest(None, self)
        asyncio.get_running_loop().call_soon(self._complete, request)
        return request

    def _complete(self, request: MemoryRequest) -> None:
        if self.state == TransactionState.ABORTED:
            request.fail(self.error or EngineError("AbortError", f"Transaction {self.id} was aborted"))
            return
        self.state = TransactionState.COMMITTED
        self.undo.clear()
        self._release()
        self._engine.transaction_finished(self)
        request.succeed(None)

    def abort(self) -> None:
        if self.state == TransactionState.ABORTED:
            return
        if self.state == TransactionState.COMMITTED:
            raise EngineError("InvalidStateError", f"Transaction {self.id} is already committed")
        self._abort(EngineError("AbortError", f"Transaction {self.id} was aborted"))

    def _abort(self, error: EngineError) -> None:
        if self.state.is_terminal():
            return
        self.state = TransactionState.ABORTED
        self.error = error
        for undo in reversed(self.undo):
            undo()
        self.undo.clear()
        if self.on_abort is not None:
            self.on_abort()
        self._release()
        self._engine.transaction_finished(self)

    def _release(self) -> None:
        for cursor in list(self.cursors):
            cursor.close()


class MemoryConnection:
    """An open database."""

    def __init__(self, engine: MemoryStorageEngine, data: DatabaseData) -> None:
        self.name = data.name
        self.version = data.version
        self.data = data
        self.upgrade: MemoryTransaction | None = None
        self._engine = engine
        self._closed = False

    @property
    def collection_names(self) -> list[str]:
        return sorted(self.data.stores)

    @property
    def closed(self) -> bool:
        return self._closed

    def _upgrade_transaction(self) -> MemoryTransaction:
        if self.upgrade is None or not self.upgrade.active:
            raise EngineError("InvalidStateError", "Collections can only change during an upgrade")
        return self.upgrade

    def create_collection(
        self,
        name: str,
        key_path: KeyPath | Sequence[str] | None = None,
        auto_increment: bool = False,
    ) -> MemoryObjectStore:
        transaction = self._upgrade_transaction()
        if name in self.data.stores:
            raise EngineError("ConstraintError", f"Collection '{name}' already exists")
        key_path = normalize_key_path(key_path)
        if auto_increment and (key_path == "" or isinstance(key_path, tuple)):
            raise EngineError(
                "InvalidAccessError",
                "auto_increment needs a non-empty single key path or an out-of-line key",
            )
        data = StoreData(name, key_path, auto_increment, self._engine.btree_max_keys)
        self.data.stores[name] = data
        return MemoryObjectStore(transaction, data)

    def delete_collection(self, name: str) -> None:
        self._upgrade_transaction()
        if name not in self.data.stores:
            raise EngineError("NotFoundError", f"No collection '{name}'")
        del self.data.stores[name]

    def transaction(
        self,
        names: str | Sequence[str],
        mode: TransactionMode | str = TransactionMode.READ_ONLY,
    ) -> MemoryTransaction:
        if self._closed:
            raise EngineError("InvalidStateError", f"Connection to '{self.name}' is closed")
        if self.upgrade is not None and self.upgrade.active:
            raise EngineError("InvalidStateError", "An upgrade is running")

        mode = TransactionMode(mode)
        if mode == TransactionMode.VERSION_CHANGE:
            raise EngineError("InvalidAccessError", "Upgrade transactions are opened by the engine")

        scope = [names] if isinstance(names, str) else list(names)
        if not scope:
            raise EngineError("InvalidAccessError", "A transaction needs at least one collection")
        missing = [name for name in scope if name not in self.data.stores]
        if missing:
            raise EngineError("NotFoundError", f"No collection {', '.join(map(repr, missing))}")

        return self._engine.begin(self, frozenset(scope), mode)

    def close(self) -> None:
        self._closed = True


class MemoryStorageEngine:
    """Event based in-memory storage engine.

    Example:
        >>> engine = MemoryStorageEngine()
        >>> request = engine.open("app", 1, on_upgrade_needed=create_collections)
        >>> request.on_success = lambda: use(request.result)
    """

    def __init__(self, btree_max_keys: int = DEFAULT_MAX_KEYS) -> None:
        if btree_max_keys < 3:
            raise ValueError(f"btree_max_keys must be at least 3, got {btree_max_keys}")
        self.btree_max_keys = btree_max_keys
        self._databases: dict[str, DatabaseData] = {}
        self._active: dict[TransactionId, MemoryTransaction] = {}
        self._next_txn_id = 1
        self._committed_total = 0
        self._aborted_total = 0

    @property
    def database_names(self) -> list[str]:
        return sorted(self._databases)

    def begin(
        self,
        connection: MemoryConnection,
        names: frozenset[str] | None,
        mode: TransactionMode,
    ) -> MemoryTransaction:
        txn_id = TransactionId(self._next_txn_id)
        self._next_txn_id += 1
        transaction = MemoryTransaction(self, connection, txn_id, names, mode)
        self._active[txn_id] = transaction
        return transaction

    def transaction_finished(self, transaction: MemoryTransaction) -> None:
        if self._active.pop(transaction.id, None) is None:
            return
        if transaction.state == TransactionState.COMMITTED:
            self._committed_total += 1
        else:
            self._aborted_total += 1

    def get_stats(self) -> EngineStats:
        return EngineStats(
            databases=len(self._databases),
            active_transactions=len(self._active),
            active_cursors=sum(len(txn.cursors) for txn in self._active.values()),
            committed_total=self._committed_total,
            aborted_total=self._aborted_total,
        )

    def open(
        self,
        name: str,
        version: int = 1,
        on_upgrade_needed: UpgradeCallback | None = None,
    ) -> MemoryRequest:
        """Open (creating or upgrading) a database.

        Raises:
            ValueError: If version is not a positive integer.
        """
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise ValueError(f"version must be a positive integer, got {version!r}")
        request = MemoryRequest()
        asyncio.get_running_loop().call_soon(
            self._open, request, name, version, on_upgrade_needed
        )
        return request

    def _open(
        self,
        request: MemoryRequest,
        name: str,
        version: int,
        on_upgrade_needed: UpgradeCallback | None,
    ) -> None:
        existing = self._databases.get(name)
        old_version = existing.version if existing is not None else 0
        if version < old_version:
            request.fail(
                EngineError(
                    "VersionError",
                    f"Requested version {version} is lower than stored version {old_version}",
                )
            )
            return

        data = existing or DatabaseData(name=name)
        if version == old_version:
            request.succeed(MemoryConnection(self, data))
            return

        snapshot = copy.deepcopy(data.stores)
        self._databases[name] = data
        data.version = version
        connection = MemoryConnection(self, data)
        transaction = self.begin(connection, None, TransactionMode.VERSION_CHANGE)
        connection.upgrade = transaction

        def rollback() -> None:
            if existing is None:
                self._databases.pop(name, None)
            else:
                data.stores = snapshot
                data.version = old_version
            connection.close()

        transaction.on_abort = rollback

        try:
            if on_upgrade_needed is not None:
                on_upgrade_needed(UpgradeEvent(connection, old_version, version))
        except Exception as exc:
            transaction.abort()
            request.fail(exc)
            return

        if not transaction.active:
            request.fail(transaction.error or EngineError("AbortError", "Upgrade was aborted"))
            return

        commit = transaction.commit()

        def on_complete() -> None:
            connection.upgrade = None
            request.succeed(connection)

        def on_failed() -> None:
            request.fail(commit.error or EngineError("AbortError", "Upgrade was aborted"))

        commit.on_success = on_complete
        commit.on_error = on_failed

    def delete_database(self, name: str) -> MemoryRequest:
        request = MemoryRequest()

        def operation() -> None:
            data = self._databases.get(name)
            if data is not None and any(
                txn.connection.data is data for txn in self._active.values()
            ):
                request.fail(
                    EngineError("InvalidStateError", f"Database '{name}' has open transactions")
                )
                return
            self._databases.pop(name, None)
            request.succeed(None)

        asyncio.get_running_loop().call_soon(operation)
        return request
