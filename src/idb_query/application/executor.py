"""Query Executor - runs declarative queries against the storage adapter.

Each operation opens exactly one transaction, scoped to the call:

    select, count, last  read-only
    insert, update,      read-write
    delete

Select asks the AccessPathSelector for an access path and drives the
matching point read or cursor scan. Scans with a post-filter run to
completion before filtering, and the limit is applied afterwards, so a
limited result is always a prefix of the unlimited one.
"""

from __future__ import annotations

import time
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from typing import Any, NoReturn

import structlog
from opentelemetry import trace

from idb_query.application.storage_adapter import StorageAdapter
from idb_query.domain.entities import (
    Count,
    Delete,
    Insert,
    Last,
    Query,
    Select,
    Update,
    is_record_batch,
)
from idb_query.domain.services import (
    AccessPathSelector,
    PostFilterMode,
    PrimaryKeyPolicy,
    apply_post_filter,
)
from idb_query.domain.value_objects import (
    MISSING,
    AccessPath,
    Bound,
    FullScan,
    IndexKey,
    IndexPoint,
    IndexRange,
    KeyRange,
    PrimaryKey,
    TransactionMode,
    evaluate_key_path,
)
from idb_query.infrastructure.logging import get_logger
from idb_query.infrastructure.metrics import MetricsRegistry, get_metrics
from idb_query.infrastructure.tracing import trace_span
from idb_query.ports.inbound.query_service import UnsupportedPayload
from idb_query.ports.outbound import EngineObjectStore, EngineTransaction


def _index_key_matches(value: Any, expected: IndexKey, multi_entry: bool) -> bool:
    if value is MISSING:
        return False
    if multi_entry and isinstance(value, list):
        return any(IndexKey.is_valid(item) and IndexKey.of(item) == expected for item in value)
    return IndexKey.is_valid(value) and IndexKey.of(value) == expected


def _key_range(bound: Bound) -> KeyRange:
    """Closed range for a caller bound.

    Raises:
        ValueError: If a bound is not a valid key or start exceeds end.
    """
    return KeyRange.bound(bound.start, bound.end)


class QueryExecutor:
    """Executes declarative queries.

    The executor holds no connection state of its own: it is handed a
    StorageAdapter for one connection and opens a transaction per call.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        key_policy: PrimaryKeyPolicy | None = None,
        post_filter_mode: PostFilterMode | str = PostFilterMode.ALL,
        metrics: MetricsRegistry | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._adapter = adapter
        self._selector = AccessPathSelector(key_policy)
        self._post_filter_mode = PostFilterMode(post_filter_mode)
        self._metrics = metrics or get_metrics()
        self._logger = logger or get_logger(__name__)

    @property
    def key_policy(self) -> PrimaryKeyPolicy:
        return self._selector.key_policy

    @property
    def post_filter_mode(self) -> PostFilterMode:
        return self._post_filter_mode

    @contextmanager
    def _observe(self, operation: str, collection: str) -> Generator[trace.Span, None, None]:
        """Trace, time and count one query."""
        start = time.perf_counter()
        status = "error"
        with trace_span(f"query.{operation}", {"collection": collection}) as span:
            try:
                yield span
                status = "success"
            finally:
                self._metrics.queries_total.labels(operation=operation, status=status).inc()
                self._metrics.query_latency_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )

    async def execute(self, query: Query) -> Any:
        """Run any query object.

        Args:
            query: A Select, Insert, Update, Delete, Count or Last query.

        Returns:
            The result of the matching operation.
        """
        if isinstance(query, Select):
            return await self._select(query)
        elif isinstance(query, Insert):
            return await self.insert(query.collection, query.records)
        elif isinstance(query, Update):
            return await self.update(query.collection, query.where, query.patch, query.merge)
        elif isinstance(query, Delete):
            return await self.delete(query.collection, query.where)
        elif isinstance(query, Count):
            return await self.count(query.collection)
        elif isinstance(query, Last):
            return await self.last(query.collection)
        raise TypeError(f"Unsupported query type: {type(query).__name__}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def select(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Any]:
        """Read the records matching ``where``, at most ``limit`` of them."""
        return await self._select(Select(collection=collection, where=where, limit=limit))

    async def _select(self, query: Select) -> list[Any]:
        with self._observe("select", query.collection) as span:
            async with self._adapter.transaction(query.collection) as txn:
                descriptor = self._adapter.describe(txn, query.collection)
                path = self._selector.select_path(descriptor, query.filter)
                span.set_attribute("access_path", path.name)
                self._metrics.access_paths_total.labels(path=path.name).inc()
                records = await self._read(txn, query.collection, path, query.limit)

            self._metrics.records_returned_total.inc(len(records))
            self._logger.debug(
                "select_completed",
                collection=query.collection,
                access_path=path.name,
                records=len(records),
            )
            return records

    async def _read(
        self,
        txn: EngineTransaction,
        collection: str,
        path: AccessPath,
        limit: int | None,
    ) -> list[Any]:
        store = self._adapter.store(txn, collection)

        if isinstance(path, PrimaryKey):
            record = await self._adapter.get(store, path.value)
            return [] if record is None else [record]
        if isinstance(path, IndexPoint):
            return await self._index_point(store, path, limit)
        if isinstance(path, IndexRange):
            return await self._index_range(store, path, limit)
        return await self._full_scan(store, path, limit)

    async def _index_point(
        self,
        store: EngineObjectStore,
        path: IndexPoint,
        limit: int | None,
    ) -> list[Any]:
        index = self._adapter.index(store, path.index_name)
        expected = IndexKey.of(path.value)
        records: list[Any] = []

        async with self._adapter.index_cursor(index, KeyRange.only(path.value)) as session:
            async for entry in session:
                value = evaluate_key_path(entry.value, path.key_path)
                if not _index_key_matches(value, expected, path.multi_entry):
                    continue
                records.append(entry.value)
                if limit is not None and len(records) >= limit:
                    break

        return records

    async def _index_range(
        self,
        store: EngineObjectStore,
        path: IndexRange,
        limit: int | None,
    ) -> list[Any]:
        ranges = [_key_range(bound) for bound in path.bounds]
        source = store if path.index_name is None else self._adapter.index(store, path.index_name)
        cap = None if path.post_filter else limit
        records: list[Any] = []

        for key_range in ranges:
            cursor = (
                self._adapter.store_cursor(source, key_range)
                if path.index_name is None
                else self._adapter.index_cursor(source, key_range)
            )
            async with cursor as session:
                async for entry in session:
                    records.append(entry.value)
                    if cap is not None and len(records) >= cap:
                        break
            if cap is not None and len(records) >= cap:
                break

        return self._finish_scan(records, path.post_filter, limit)

    async def _full_scan(
        self,
        store: EngineObjectStore,
        path: FullScan,
        limit: int | None,
    ) -> list[Any]:
        cap = None if path.post_filter else limit
        records: list[Any] = []

        async with self._adapter.store_cursor(store) as session:
            async for entry in session:
                records.append(entry.value)
                if cap is not None and len(records) >= cap:
                    break

        return self._finish_scan(records, path.post_filter, limit)

    def _finish_scan(
        self,
        records: list[Any],
        post_filter: tuple[tuple[str, Any], ...],
        limit: int | None,
    ) -> list[Any]:
        if post_filter:
            records = apply_post_filter(records, post_filter, self._post_filter_mode)
        return records if limit is None else records[:limit]

    async def count(self, collection: str) -> int:
        """Return the exact number of records in a collection."""
        with self._observe("count", collection):
            async with self._adapter.transaction(collection) as txn:
                return await self._adapter.count(self._adapter.store(txn, collection))

    async def last(self, collection: str) -> Any | None:
        """Return the greatest primary key, or None if the collection is empty.

        Lists every key; O(n) in the collection size.
        """
        with self._observe("last", collection):
            async with self._adapter.transaction(collection) as txn:
                keys = await self._adapter.get_all_keys(self._adapter.store(txn, collection))
            return keys[-1] if keys else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _records_of(self, collection: str, payload: Any) -> list[Mapping[str, Any]]:
        if isinstance(payload, Mapping):
            return [payload]
        if is_record_batch(payload):
            for item in payload:
                if not isinstance(item, Mapping):
                    self._unsupported(collection, type(item).__name__)
            return list(payload)
        self._unsupported(collection, type(payload).__name__)

    def _unsupported(self, collection: str, payload_type: str) -> NoReturn:
        self._logger.warning("unsupported_payload", collection=collection, payload_type=payload_type)
        raise UnsupportedPayload(payload_type)

    async def insert(self, collection: str, records: Any) -> Any:
        """Add one record or a sequence of records in one transaction.

        The adds are issued without awaiting each one; the call resolves
        once the transaction commits. If any add fails, none is kept.

        Returns:
            The records passed in.

        Raises:
            UnsupportedPayload: If records is neither a record nor a
                sequence of records. Nothing is written.
            StorageFailure: If the engine rejects any record.
        """
        with self._observe("insert", collection):
            async with self._adapter.transaction(collection, TransactionMode.READ_WRITE) as txn:
                batch = self._records_of(collection, records)
                store = self._adapter.store(txn, collection)
                for record in batch:
                    self._adapter.call("add", store.add, record)

            self._logger.debug("records_inserted", collection=collection, count=len(batch))
            return records

    async def update(
        self,
        collection: str,
        where: Mapping[str, Any],
        patch: Any,
        merge: bool = False,
    ) -> Any | None:
        """Upsert the record whose primary key ``where`` names.

        With ``merge`` the existing record is read in the same
        transaction and shallow-merged with ``patch``; otherwise
        ``patch`` replaces it.

        Returns:
            The record as written, or None when ``where`` names no
            primary key (nothing is written).
        """
        with self._observe("update", collection):
            key = self.key_policy.resolve(where)
            if key is None:
                self._logger.debug("update_skipped", collection=collection, reason="no_primary_key")
                return None
            if merge and not isinstance(patch, Mapping):
                raise ValueError(f"A merge update needs a mapping, got {type(patch).__name__}")

            async with self._adapter.transaction(collection, TransactionMode.READ_WRITE) as txn:
                store = self._adapter.store(txn, collection)
                value = patch
                if merge:
                    existing = await self._adapter.get(store, key)
                    base = existing if isinstance(existing, Mapping) else {}
                    value = {**base, **patch}
                stored_key = await self._adapter.put(store, value, key)
                written = await self._adapter.get(store, stored_key)

            return written

    async def delete(self, collection: str, where: Mapping[str, Any]) -> bool | None:
        """Remove the record whose primary key ``where`` names.

        Returns:
            True if a record was removed, False if none existed, None
            when ``where`` names no primary key (nothing is written).
        """
        with self._observe("delete", collection):
            key = self.key_policy.resolve(where)
            if key is None:
                self._logger.debug("delete_skipped", collection=collection, reason="no_primary_key")
                return None

            async with self._adapter.transaction(collection, TransactionMode.READ_WRITE) as txn:
                return await self._adapter.delete(self._adapter.store(txn, collection), key)
