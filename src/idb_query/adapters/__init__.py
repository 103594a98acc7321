"""Adapters layer - concrete implementations of port interfaces.

Adapters provide the actual implementations:
- Inbound adapters: Handle incoming requests (REST)
- Outbound adapters: Implement external dependencies (storage engine)
"""

from idb_query.adapters.outbound import EngineStats, MemoryStorageEngine

__all__ = [
    # Outbound adapters
    "EngineStats",
    "MemoryStorageEngine",
]
