"""Application layer - use cases wiring the domain to the storage engine."""

from idb_query.application.database import Database
from idb_query.application.executor import QueryExecutor
from idb_query.application.schema_registrar import SchemaRegistrar
from idb_query.application.storage_adapter import (
    CursorEntry,
    CursorSession,
    StorageAdapter,
    wait_for,
)

__all__ = [
    "CursorEntry",
    "CursorSession",
    "Database",
    "QueryExecutor",
    "SchemaRegistrar",
    "StorageAdapter",
    "wait_for",
]
