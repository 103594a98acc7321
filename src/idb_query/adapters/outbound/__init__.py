"""Outbound adapters - implementations of outbound ports.

These adapters implement the storage engine the query layer runs on.
"""

from idb_query.adapters.outbound.memory_engine import (
    EngineStats,
    MemoryConnection,
    MemoryRequest,
    MemoryStorageEngine,
    MemoryTransaction,
)

__all__ = [
    "EngineStats",
    "MemoryConnection",
    "MemoryRequest",
    "MemoryStorageEngine",
    "MemoryTransaction",
]
