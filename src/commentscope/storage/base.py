"""
Storage interface for cache, collection and learning persistence.
"""

from __future__ import annotations

from typing import Protocol


class StorageError(RuntimeError):
    """Raised when the backing store cannot complete a read or write."""


class StorageCapacityError(StorageError):
    """Raised when a write would exceed the store's byte ceiling."""

    def __init__(self, key: str, requested: int, in_use: int, limit: int) -> None:
        super().__init__(
            f"Store capacity exceeded writing {key!r}: "
            f"{requested} bytes requested, {in_use}/{limit} bytes in use."
        )
        self.key = key
        self.requested = requested
        self.in_use = in_use
        self.limit = limit


# Failures a caller can log and survive; the value is simply not persisted.
RECOVERABLE_STORAGE_ERRORS: tuple[type[Exception], ...] = (StorageError, OSError)


class KeyValueStore(Protocol):
    """Byte-valued key/value persistence used by every stateful component."""

    def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when absent."""

    def set(self, key: str, value: bytes) -> None:
        """Insert or replace a value.

        Raises StorageCapacityError when full and StorageError (or OSError) when
        the backend fails.
        """

    def remove(self, key: str) -> bool:
        """Delete a key. Return True when something was removed."""

    def keys(self, prefix: str = "") -> list[str]:
        """List keys with the given prefix, least recently written first."""

    def bytes_in_use(self) -> int:
        """Total size of stored values in bytes."""

    def close(self) -> None:
        """Release the underlying connection."""
