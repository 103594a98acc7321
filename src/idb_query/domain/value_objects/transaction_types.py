"""Transaction-related types and enumerations.

These types define the modes and lifecycle states of storage engine
transactions. Every query runs inside exactly one transaction that is
scoped to that query.
"""

from __future__ import annotations

from enum import Enum, auto


class TransactionMode(str, Enum):
    """Access mode requested when a transaction begins."""

    READ_ONLY = "readonly"
    """Reads only. Writes fail with ReadOnlyError."""

    READ_WRITE = "readwrite"
    """Reads and writes. Writes are rolled back if the transaction aborts."""

    VERSION_CHANGE = "versionchange"
    """Schema upgrade. Only the engine opens transactions in this mode."""

    @property
    def can_write(self) -> bool:
        """Check if transactions in this mode may write."""
        return self != TransactionMode.READ_ONLY


class TransactionState(Enum):
    """Transaction lifecycle states.

    State machine:

        ACTIVE ──commit()──> COMMITTING ──> COMMITTED
           │                     │
           └──abort()/error──────┴────────> ABORTED

    A transaction in a terminal state accepts no further requests.
    """

    ACTIVE = auto()
    """Transaction is running and accepts requests."""

    COMMITTING = auto()
    """Commit was requested; queued requests are still being processed."""

    COMMITTED = auto()
    """All writes are applied."""

    ABORTED = auto()
    """All writes have been rolled back."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (COMMITTED or ABORTED)."""
        return self in (TransactionState.COMMITTED, TransactionState.ABORTED)

    def accepts_requests(self) -> bool:
        """Check if new requests may be queued on the transaction."""
        return self == TransactionState.ACTIVE
