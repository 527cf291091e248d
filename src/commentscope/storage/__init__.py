"""Storage backends for commentscope persistence."""

from .base import (
    RECOVERABLE_STORAGE_ERRORS,
    KeyValueStore,
    StorageCapacityError,
    StorageError,
)
from .duckdb import DuckDBKeyValueStore

__all__ = [
    "KeyValueStore",
    "RECOVERABLE_STORAGE_ERRORS",
    "StorageCapacityError",
    "StorageError",
    "DuckDBKeyValueStore",
]
