"""Database - entry point that owns one engine connection.

This module wires the query layer together: it opens the database on
the storage engine (running the schema registrar on upgrade), seeds the
collections it created, and hands an explicit StorageAdapter to the
QueryExecutor. Nothing is kept in module-level state, so several
databases can live side by side.

Usage:
    from idb_query.application import Database

    schema = {
        "name": "app",
        "version": 1,
        "schemas": [
            {"name": "users", "indexes": [{"name": "byRole", "keyPath": "role"}]},
        ],
    }

    async with Database(schema) as db:
        await db.insert("users", [{"id": 1, "role": "admin"}])
        admins = await db.select("users", {"role": "admin"}, limit=1)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict
from typing import Any

from idb_query.adapters.outbound import MemoryStorageEngine
from idb_query.application.executor import QueryExecutor
from idb_query.application.schema_registrar import SchemaRegistrar
from idb_query.application.storage_adapter import StorageAdapter, wait_for
from idb_query.domain.entities import DatabaseSchema, Query
from idb_query.domain.services import PrimaryKeyPolicy
from idb_query.infrastructure.config import Config, get_config
from idb_query.infrastructure.logging import get_logger
from idb_query.infrastructure.metrics import MetricsRegistry, get_metrics
from idb_query.ports.outbound import EngineConnection, StorageEngine


class Database:
    """A connected, schema-defined database.

    Features:
        - Creates collections and indexes the first time it is opened
        - Seeds newly created collections with their schema data
        - Runs every query in its own transaction
    """

    def __init__(
        self,
        schema: DatabaseSchema | Mapping[str, Any],
        engine: StorageEngine | None = None,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the database.

        Args:
            schema: Schema object or its dictionary form. A dictionary
                without name or version takes them from the configuration.
            engine: Storage engine; a MemoryStorageEngine by default.
            config: Configuration; the global configuration by default.
            metrics: Metrics registry; the global registry by default.
        """
        self._config = config or get_config()
        if not isinstance(schema, DatabaseSchema):
            schema = DatabaseSchema.from_mapping(
                {
                    "name": self._config.store.name,
                    "version": self._config.store.version,
                    **schema,
                }
            )
        self._schema = schema
        self._engine = engine or MemoryStorageEngine(
            btree_max_keys=self._config.engine.btree_max_keys
        )
        self._metrics = metrics or get_metrics()
        self._logger = get_logger(__name__, database=schema.name)
        self._registrar = SchemaRegistrar(schema, self._logger)

        self._connection: EngineConnection | None = None
        self._adapter: StorageAdapter | None = None
        self._executor: QueryExecutor | None = None

    @property
    def schema(self) -> DatabaseSchema:
        return self._schema

    @property
    def engine(self) -> StorageEngine:
        return self._engine

    @property
    def is_connected(self) -> bool:
        """Check if the database is connected."""
        return self._connection is not None

    @property
    def executor(self) -> QueryExecutor:
        """The query executor of the open connection.

        Raises:
            RuntimeError: If not connected.
        """
        if self._executor is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._executor

    async def connect(self) -> None:
        """Open the database, creating and seeding it on first use.

        Raises:
            RuntimeError: If already connected.
            UnimplementedMigration: If the stored schema has another version.
            StorageFailure: If the engine refuses the open or the seed data.
        """
        if self._connection is not None:
            raise RuntimeError("Database already connected")

        request = self._engine.open(
            self._schema.name,
            self._schema.version,
            on_upgrade_needed=self._registrar.upgrade,
        )
        connection = await wait_for(request, "open")

        self._connection = connection
        self._adapter = StorageAdapter(connection, self._metrics, self._logger)
        self._executor = QueryExecutor(
            self._adapter,
            key_policy=PrimaryKeyPolicy(self._config.query.key_names),
            post_filter_mode=self._config.query.post_filter_mode,
            metrics=self._metrics,
            logger=self._logger,
        )

        registered = self._registrar.take_registered()
        if registered:
            try:
                await self._registrar.seed(self._executor, registered)
            except BaseException:
                await self.close()
                raise

        self._logger.info(
            "database_connected",
            version=connection.version,
            collections=connection.collection_names,
        )

    async def close(self) -> None:
        """Close the connection. Safe to call when not connected."""
        if self._connection is None:
            return
        self._connection.close()
        self._connection = None
        self._adapter = None
        self._executor = None
        self._logger.info("database_closed")

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def select(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Any]:
        return await self.executor.select(collection, where, limit)

    async def insert(self, collection: str, records: Any) -> Any:
        return await self.executor.insert(collection, records)

    async def update(
        self,
        collection: str,
        where: Mapping[str, Any],
        patch: Any,
        merge: bool = False,
    ) -> Any | None:
        return await self.executor.update(collection, where, patch, merge)

    async def delete(self, collection: str, where: Mapping[str, Any]) -> bool | None:
        return await self.executor.delete(collection, where)

    async def count(self, collection: str) -> int:
        return await self.executor.count(collection)

    async def last(self, collection: str) -> Any | None:
        return await self.executor.last(collection)

    async def execute(self, query: Query) -> Any:
        return await self.executor.execute(query)

    def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary with connection and engine statistics.
        """
        stats: dict[str, Any] = {
            "database": self._schema.name,
            "version": self._schema.version,
            "connected": self.is_connected,
        }

        if self._connection is not None:
            stats["collections"] = self._connection.collection_names

        engine_stats = getattr(self._engine, "get_stats", None)
        if engine_stats is not None:
            stats["engine"] = asdict(engine_stats())

        return stats
