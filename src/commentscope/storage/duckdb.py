"""
DuckDB key-value backend.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import duckdb

from ..config import MEMORY_DB
from .base import StorageCapacityError, StorageError


class DuckDBKeyValueStore:
    """DuckDB-backed byte store with an optional capacity ceiling."""

    def __init__(
        self,
        db_path: str,
        *,
        max_bytes: int | None = None,
        read_only: bool = False,
    ) -> None:
        if db_path == MEMORY_DB:
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.max_bytes = max_bytes
        self.read_only = read_only
        self._lock = threading.Lock()
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        self._sequence = 0
        if not read_only:
            self.initialize()
        self._sequence = self._max_sequence()

    def initialize(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key VARCHAR PRIMARY KEY,
                    value BLOB NOT NULL,
                    size_bytes BIGINT NOT NULL,
                    write_seq BIGINT NOT NULL,
                    updated_at DOUBLE NOT NULL
                );
                """
            )

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def _locked(self, operation: str, key: str) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            try:
                yield self._conn
            except duckdb.Error as exc:
                raise StorageError(f"DuckDB {operation} failed for {key!r}: {exc}") from exc

    def get(self, key: str) -> bytes | None:
        with self._locked("read", key) as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                [key],
            ).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def set(self, key: str, value: bytes) -> None:
        payload = bytes(value)
        with self._locked("write", key) as conn:
            if self.max_bytes is not None:
                in_use = self._bytes_in_use_locked()
                existing = conn.execute(
                    "SELECT size_bytes FROM kv_store WHERE key = ?",
                    [key],
                ).fetchone()
                replaced = int(existing[0]) if existing is not None else 0
                if in_use - replaced + len(payload) > self.max_bytes:
                    raise StorageCapacityError(key, len(payload), in_use, self.max_bytes)
            self._sequence += 1
            conn.execute(
                """
                INSERT INTO kv_store (key, value, size_bytes, write_seq, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    size_bytes = excluded.size_bytes,
                    write_seq = excluded.write_seq,
                    updated_at = excluded.updated_at
                """,
                [key, payload, len(payload), self._sequence, time.time()],
            )

    def remove(self, key: str) -> bool:
        with self._locked("delete", key) as conn:
            row = conn.execute(
                "SELECT 1 FROM kv_store WHERE key = ?",
                [key],
            ).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM kv_store WHERE key = ?", [key])
        return True

    def keys(self, prefix: str = "") -> list[str]:
        with self._locked("scan", prefix) as conn:
            rows = conn.execute(
                """
                SELECT key FROM kv_store
                WHERE starts_with(key, ?)
                ORDER BY write_seq ASC
                """,
                [prefix],
            ).fetchall()
        return [str(row[0]) for row in rows]

    def bytes_in_use(self) -> int:
        with self._locked("size", "*"):
            return self._bytes_in_use_locked()

    def _bytes_in_use_locked(self) -> int:
        row = self._conn.execute(
            "SELECT coalesce(sum(size_bytes), 0) FROM kv_store"
        ).fetchone()
        return int(row[0]) if row is not None else 0

    def _max_sequence(self) -> int:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT coalesce(max(write_seq), 0) FROM kv_store"
                ).fetchone()
            except duckdb.CatalogException:
                return 0
        return int(row[0]) if row is not None else 0
