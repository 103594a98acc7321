"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for external systems that the
query layer depends on, namely the ordered key-value storage engine.
"""

from idb_query.ports.outbound.storage_engine import (
    EngineConnection,
    EngineCursor,
    EngineError,
    EngineIndex,
    EngineObjectStore,
    EngineRequest,
    EngineTransaction,
    StorageEngine,
    UpgradeCallback,
    UpgradeEvent,
)

__all__ = [
    "EngineConnection",
    "EngineCursor",
    "EngineError",
    "EngineIndex",
    "EngineObjectStore",
    "EngineRequest",
    "EngineTransaction",
    "StorageEngine",
    "UpgradeCallback",
    "UpgradeEvent",
]
