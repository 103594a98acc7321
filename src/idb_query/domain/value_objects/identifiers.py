"""Type-safe identifiers used by the storage engine."""

from __future__ import annotations

from typing import NewType

NodeId = NewType("NodeId", int)
"""Identifier of a B+Tree node inside one tree."""

TransactionId = NewType("TransactionId", int)
"""Unique identifier for a transaction. Monotonically increasing per engine."""

INVALID_NODE_ID = NodeId(-1)
