"""Keys, key ranges and key path evaluation.

Keys are the values that order records inside a collection and entries
inside an index. Only a small set of Python types are valid keys; they
are ordered first by type, then by value:

    numbers < datetimes < strings < bytes < arrays

Arrays compare element by element and then by length, so ``[1, 2]`` sorts
before ``[1, 2, 0]`` and before ``[1, 3]``.
"""

from __future__ import annotations

import functools
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Any


class _Missing:
    """Marker for a key path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

KeyPath = str | tuple[str, ...]


class InvalidKeyError(ValueError):
    """Raised when a value cannot be used as a key."""


class KeyType(IntEnum):
    """Key types, declared in sort order."""

    NUMBER = 1
    DATE = 2
    STRING = 3
    BINARY = 4
    ARRAY = 5


@functools.total_ordering
@dataclass(frozen=True)
class IndexKey:
    """A validated, totally ordered key.

    Attributes:
        value: The normalized value. Arrays hold a tuple of IndexKey.
        key_type: The key type, used as the primary sort criterion.
    """

    value: Any
    key_type: KeyType

    @classmethod
    def of(cls, value: Any) -> IndexKey:
        """Build a key from a Python value.

        Raises:
            InvalidKeyError: If the value is not a valid key.
        """
        if isinstance(value, IndexKey):
            return value
        if isinstance(value, bool):
            raise InvalidKeyError(f"Not a valid key: {value!r}")
        if isinstance(value, (int, float)):
            if isinstance(value, float) and math.isnan(value):
                raise InvalidKeyError("NaN is not a valid key")
            return cls(value=value, key_type=KeyType.NUMBER)
        if isinstance(value, datetime):
            return cls(value=value, key_type=KeyType.DATE)
        if isinstance(value, str):
            return cls(value=value, key_type=KeyType.STRING)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls(value=bytes(value), key_type=KeyType.BINARY)
        if isinstance(value, (list, tuple)):
            return cls(
                value=tuple(cls.of(item) for item in value),
                key_type=KeyType.ARRAY,
            )
        raise InvalidKeyError(f"Not a valid key: {value!r}")

    @staticmethod
    def is_valid(value: Any) -> bool:
        """Return True if the value can be used as a key."""
        try:
            IndexKey.of(value)
        except InvalidKeyError:
            return False
        return True

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, IndexKey):
            return NotImplemented
        if self.key_type != other.key_type:
            return self.key_type < other.key_type
        return self.value < other.value

    def to_python(self) -> Any:
        """Return the plain Python value for this key."""
        if self.key_type == KeyType.ARRAY:
            return [item.to_python() for item in self.value]
        return self.value

    def __repr__(self) -> str:
        return f"IndexKey({self.to_python()!r})"


@dataclass(frozen=True)
class KeyRange:
    """A continuous interval over keys.

    ``None`` for a bound means unbounded on that side.
    """

    lower: IndexKey | None = None
    upper: IndexKey | None = None
    lower_open: bool = False
    upper_open: bool = False

    def __post_init__(self) -> None:
        if self.lower is None or self.upper is None:
            return
        if self.upper < self.lower:
            raise ValueError(
                f"Lower bound {self.lower.to_python()!r} is greater than "
                f"upper bound {self.upper.to_python()!r}"
            )
        if self.lower == self.upper and (self.lower_open or self.upper_open):
            raise ValueError("Empty key range: equal bounds with an open side")

    @classmethod
    def only(cls, value: Any) -> KeyRange:
        """Range containing a single key."""
        key = IndexKey.of(value)
        return cls(lower=key, upper=key)

    @classmethod
    def bound(
        cls,
        lower: Any,
        upper: Any,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> KeyRange:
        """Range between two keys, closed on both sides by default."""
        return cls(
            lower=IndexKey.of(lower),
            upper=IndexKey.of(upper),
            lower_open=lower_open,
            upper_open=upper_open,
        )

    @classmethod
    def lower_bound(cls, value: Any, exclusive: bool = False) -> KeyRange:
        """Range of all keys at or above (above, if exclusive) a key."""
        return cls(lower=IndexKey.of(value), lower_open=exclusive)

    @classmethod
    def upper_bound(cls, value: Any, exclusive: bool = False) -> KeyRange:
        """Range of all keys at or below (below, if exclusive) a key."""
        return cls(upper=IndexKey.of(value), upper_open=exclusive)

    def includes(self, key: IndexKey) -> bool:
        """Return True if the key falls inside the range."""
        if self.lower is not None:
            if key < self.lower or (self.lower_open and key == self.lower):
                return False
        if self.upper is not None:
            if key > self.upper or (self.upper_open and key == self.upper):
                return False
        return True


def evaluate_key_path(value: Any, key_path: KeyPath) -> Any:
    """Resolve a key path against a record.

    A string path is split on dots; the empty string addresses the value
    itself. A tuple of paths resolves each one into a list.

    Returns:
        The resolved value, or MISSING if any segment is absent.
    """
    if not isinstance(key_path, str):
        resolved = [evaluate_key_path(value, path) for path in key_path]
        if any(item is MISSING for item in resolved):
            return MISSING
        return resolved

    if key_path == "":
        return value

    current = value
    for segment in key_path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def inject_key(value: dict[str, Any], key_path: str, key: Any) -> None:
    """Write a generated key into a record at a dotted key path."""
    segments = key_path.split(".")
    current = value
    for segment in segments[:-1]:
        current = current.setdefault(segment, {})
        if not isinstance(current, dict):
            raise InvalidKeyError(f"Cannot inject key at path '{key_path}'")
    current[segments[-1]] = key


def normalize_key_path(key_path: str | Sequence[str] | None) -> KeyPath | None:
    """Normalize a key path declaration to a string or tuple of strings."""
    if key_path is None or isinstance(key_path, str):
        return key_path
    return tuple(key_path)
