"""Storage Adapter - awaitable facade over the event based engine.

The engine reports every outcome through a request's success / error
callback pair. The adapter turns each request into a single awaited
result and scopes transactions and cursors so that they are released on
every exit path.

Usage:
    adapter = StorageAdapter(connection)

    async with adapter.transaction("users", TransactionMode.READ_WRITE) as txn:
        store = adapter.store(txn, "users")
        await adapter.put(store, {"id": 1, "name": "Ann"})

    async with adapter.transaction("users") as txn:
        store = adapter.store(txn, "users")
        async with adapter.store_cursor(store) as session:
            async for entry in session:
                print(entry.primary_key, entry.value)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from idb_query.domain.value_objects import (
    CollectionDescriptor,
    IndexDescriptor,
    KeyRange,
    TransactionMode,
)
from idb_query.infrastructure.logging import get_logger
from idb_query.infrastructure.metrics import MetricsRegistry, get_metrics
from idb_query.ports.inbound.query_service import StorageFailure
from idb_query.ports.outbound import (
    EngineConnection,
    EngineError,
    EngineIndex,
    EngineObjectStore,
    EngineRequest,
    EngineTransaction,
)

T = TypeVar("T")


def storage_failure(operation: str, error: EngineError) -> StorageFailure:
    return StorageFailure(operation, error.name, error.message)


def call(operation: str, func: Callable[..., T], *args: Any) -> T:
    """Invoke an engine method, converting synchronous engine errors."""
    try:
        return func(*args)
    except EngineError as exc:
        raise storage_failure(operation, exc) from exc


async def wait_for(request: EngineRequest, operation: str = "request") -> Any:
    """Await the outcome of an engine request.

    Args:
        request: A pending or completed request.
        operation: Operation name reported on failure.

    Returns:
        The request's result.

    Raises:
        StorageFailure: If the engine reported an error.
        Exception: Errors that did not come from the engine (such as
            one raised by an upgrade callback) are re-raised as they are.
    """
    if request.ready_state != "done":
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def settle() -> None:
            if not future.done():
                future.set_result(None)

        request.on_success = settle
        request.on_error = settle
        await future

    error = request.error
    if error is None:
        return request.result
    if isinstance(error, EngineError):
        raise storage_failure(operation, error) from error
    raise error


@dataclass(frozen=True)
class CursorEntry:
    """One position visited by a cursor."""

    key: Any
    primary_key: Any
    value: Any


class CursorSession:
    """Async iterator over one engine cursor.

    The session advances the cursor only when the next entry is
    requested, so breaking out of the loop stops the scan.
    """

    def __init__(
        self,
        request: EngineRequest,
        operation: str,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._request = request
        self._operation = operation
        self._on_close = on_close
        self._cursor: Any = None
        self._started = False
        self._closed = False
        self.visited = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> CursorSession:
        return self

    async def __anext__(self) -> CursorEntry:
        if self._closed:
            raise StopAsyncIteration
        if self._started:
            call(self._operation, self._cursor.continue_)
        self._started = True

        cursor = await wait_for(self._request, self._operation)
        if cursor is None:
            self._cursor = None
            self.close()
            raise StopAsyncIteration

        self._cursor = cursor
        self.visited += 1
        return CursorEntry(key=cursor.key, primary_key=cursor.primary_key, value=cursor.value)

    def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
        if self._on_close is not None:
            self._on_close()


class StorageAdapter:
    """Awaitable access to one engine connection.

    The adapter holds no transaction of its own; every transaction it
    opens is scoped to one ``async with`` block.
    """

    def __init__(
        self,
        connection: EngineConnection,
        metrics: MetricsRegistry | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._connection = connection
        self._metrics = metrics or get_metrics()
        self._logger = logger or get_logger(__name__)
        self._descriptors: dict[str, CollectionDescriptor] = {}

    @property
    def connection(self) -> EngineConnection:
        return self._connection

    def call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        return call(operation, func, *args)

    @asynccontextmanager
    async def transaction(
        self,
        names: str | Sequence[str],
        mode: TransactionMode = TransactionMode.READ_ONLY,
    ) -> AsyncIterator[EngineTransaction]:
        """Open a transaction that commits on normal exit.

        Any exception inside the block aborts the transaction and
        propagates. A commit that fails raises StorageFailure.
        """
        mode = TransactionMode(mode)
        transaction = call("transaction", self._connection.transaction, names, mode)
        self._metrics.transactions_active.inc()
        status = "abort"
        try:
            yield transaction
            if not transaction.active and isinstance(transaction.error, EngineError):
                raise storage_failure("commit", transaction.error) from transaction.error
            await wait_for(call("commit", transaction.commit), "commit")
            status = "commit"
        except BaseException:
            self._abort(transaction)
            raise
        finally:
            self._metrics.transactions_active.dec()
            self._metrics.transactions_total.labels(mode=mode.value, status=status).inc()

    def _abort(self, transaction: EngineTransaction) -> None:
        try:
            transaction.abort()
        except EngineError as exc:
            self._logger.warning("transaction_abort_failed", error=exc.name, message=exc.message)

    def store(self, transaction: EngineTransaction, name: str) -> EngineObjectStore:
        return call("object_store", transaction.object_store, name)

    def index(self, store: EngineObjectStore, name: str) -> EngineIndex:
        return call("index", store.index, name)

    def describe(self, transaction: EngineTransaction, name: str) -> CollectionDescriptor:
        """Describe a collection's key path and indexes.

        Collections and indexes only change during an upgrade, so
        descriptors are cached per connection.
        """
        descriptor = self._descriptors.get(name)
        if descriptor is not None:
            return descriptor

        store = self.store(transaction, name)
        indexes = tuple(
            IndexDescriptor(
                name=index.name,
                key_path=index.key_path,
                unique=index.unique,
                multi_entry=index.multi_entry,
            )
            for index in (self.index(store, index_name) for index_name in store.index_names)
        )
        descriptor = CollectionDescriptor(name=name, key_path=store.key_path, indexes=indexes)
        self._descriptors[name] = descriptor
        return descriptor

    async def get(self, store: EngineObjectStore, key: Any) -> Any:
        return await wait_for(call("get", store.get, key), "get")

    async def put(self, store: EngineObjectStore, value: Any, key: Any = None) -> Any:
        return await wait_for(call("put", store.put, value, key), "put")

    async def delete(self, store: EngineObjectStore, key: Any) -> bool:
        return await wait_for(call("delete", store.delete, key), "delete")

    async def count(self, store: EngineObjectStore, key_range: KeyRange | None = None) -> int:
        return await wait_for(call("count", store.count, key_range), "count")

    async def get_all_keys(
        self,
        store: EngineObjectStore,
        key_range: KeyRange | None = None,
        count: int | None = None,
    ) -> list[Any]:
        return await wait_for(
            call("get_all_keys", store.get_all_keys, key_range, count), "get_all_keys"
        )

    def store_cursor(
        self, store: EngineObjectStore, key_range: KeyRange | None = None
    ) -> AbstractAsyncContextManager[CursorSession]:
        """Cursor session over a collection in primary key order."""
        return self._cursor(store, key_range, "store")

    def index_cursor(self, index: EngineIndex, key_range: KeyRange | None = None
    ) -> AbstractAsyncContextManager[CursorSession]:
        """Cursor session over an index in index key order."""
        return self._cursor(index, key_range, "index")

    @asynccontextmanager
    async def _cursor(
        self,
        source: EngineObjectStore | EngineIndex,
        key_range: KeyRange | None,
        kind: str,
    ) -> AsyncIterator[CursorSession]:
        request = call("cursor", source.open_cursor, key_range)
        self._metrics.cursors_opened_total.labels(source=kind).inc()
        self._metrics.cursors_active.inc()
        session = CursorSession(request, "cursor", on_close=self._metrics.cursors_active.dec)
        try:
            yield session
        finally:
            session.close()
