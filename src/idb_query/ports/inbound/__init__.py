"""Inbound ports - what the query layer offers its callers."""

from idb_query.ports.inbound.query_service import (
    QueryError,
    QueryService,
    StorageFailure,
    UnimplementedMigration,
    UnsupportedPayload,
)

__all__ = [
    "QueryError",
    "QueryService",
    "StorageFailure",
    "UnimplementedMigration",
    "UnsupportedPayload",
]
