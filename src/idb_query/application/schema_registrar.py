"""Schema Registrar - declares collections and indexes at upgrade time.

The registrar is the upgrade callback handed to the engine when a
database is opened. It only knows how to build a database from nothing:
an upgrade from an existing version raises UnimplementedMigration, which
makes the engine roll the open back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from idb_query.application.executor import QueryExecutor
from idb_query.domain.entities import CollectionSchema, DatabaseSchema
from idb_query.infrastructure.logging import get_logger
from idb_query.ports.inbound.query_service import UnimplementedMigration
from idb_query.ports.outbound import EngineConnection, UpgradeEvent


class SchemaRegistrar:
    """Registers a DatabaseSchema with the engine."""

    def __init__(
        self,
        schema: DatabaseSchema,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._schema = schema
        self._logger = logger or get_logger(__name__)
        self._registered: list[str] = []

    @property
    def schema(self) -> DatabaseSchema:
        return self._schema

    def upgrade(self, event: UpgradeEvent) -> None:
        """Upgrade callback.

        Raises:
            UnimplementedMigration: If the stored version is not 0.
        """
        if event.old_version != 0:
            self._logger.error(
                "migration_unimplemented",
                old_version=event.old_version,
                new_version=event.new_version,
            )
            raise UnimplementedMigration(event.old_version, event.new_version)

        self._registered = []
        for collection in self._schema.collections:
            self.register(event.connection, collection)

    def register(self, connection: EngineConnection, collection: CollectionSchema) -> bool:
        """Declare one collection and its indexes.

        Returns:
            True if the collection was created, False if it already existed.
        """
        if collection.name in connection.collection_names:
            self._logger.debug("collection_exists", collection=collection.name)
            return False

        store = connection.create_collection(
            collection.name,
            key_path=collection.key_path,
            auto_increment=collection.auto_increment,
        )
        for index in collection.indexes:
            store.create_index(
                index.name,
                index.key_path,
                unique=index.unique,
                multi_entry=index.multi_entry,
            )

        self._registered.append(collection.name)
        self._logger.info(
            "collection_registered",
            collection=collection.name,
            indexes=[index.name for index in collection.indexes],
        )
        return True

    def take_registered(self) -> list[str]:
        """Return and forget the collections created since the last call."""
        registered, self._registered = self._registered, []
        return registered

    async def seed(self, executor: QueryExecutor, names: Sequence[str]) -> None:
        """Insert the seed data of the named collections, concurrently."""
        collections = [
            collection
            for collection in self._schema.collections
            if collection.name in names and collection.data
        ]
        await asyncio.gather(
            *(executor.insert(collection.name, collection.data) for collection in collections)
        )
        for collection in collections:
            self._logger.info("collection_seeded", collection=collection.name)
