"""
In-memory vector collections with explicit persistence to the key-value store.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from typing import Any, Callable, Iterable, Sequence

import numpy as np

from .models import VectorEntry
from .policy import DEFAULT_POLICY, ScoringPolicy
from .storage import RECOVERABLE_STORAGE_ERRORS, KeyValueStore

logger = logging.getLogger(__name__)

COLLECTION_PREFIX = "collection:"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| |b|); 0 for zero vectors or mismatched lengths."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def encode_vector(vector: Sequence[float]) -> str:
    return base64.b64encode(np.asarray(vector, dtype=np.float64).tobytes()).decode("ascii")


def decode_vector(raw: str) -> tuple[float, ...]:
    values = np.frombuffer(base64.b64decode(raw), dtype=np.float64)
    return tuple(float(v) for v in values)


class VectorCollection:
    """Append-only set of comment vectors, capped by ``max_size``."""

    def __init__(
        self,
        collection_id: str,
        *,
        max_size: int = DEFAULT_POLICY.collection_max_size,
    ) -> None:
        self.collection_id = collection_id
        self.max_size = max_size
        self._entries: dict[str, VectorEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    def get(self, entry_id: str) -> VectorEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def entries(self) -> list[VectorEntry]:
        with self._lock:
            return list(self._entries.values())

    def insert(self, entry: VectorEntry) -> bool:
        """Add an entry. Returns False when the id is already present."""
        with self._lock:
            if entry.id in self._entries:
                return False
            self._entries[entry.id] = entry
            if len(self._entries) > self.max_size:
                self.prune(self.max_size)
            return True

    def insert_batch(self, entries: Iterable[VectorEntry]) -> int:
        inserted = 0
        with self._lock:
            for entry in entries:
                if entry.id in self._entries:
                    continue
                self._entries[entry.id] = entry
                inserted += 1
            if len(self._entries) > self.max_size:
                self.prune(self.max_size)
        return inserted

    def prune(self, max_size: int | None = None) -> int:
        """Drop the oldest entries by ``stored_at`` until at most *max_size* remain."""
        limit = self.max_size if max_size is None else max_size
        with self._lock:
            excess = len(self._entries) - limit
            if excess <= 0:
                return 0
            # sorted() is stable, so equal timestamps fall back to insertion order.
            oldest = sorted(self._entries.values(), key=lambda e: e.stored_at)[:excess]
            for entry in oldest:
                del self._entries[entry.id]
        logger.debug("Pruned %d entries from collection %s", excess, self.collection_id)
        return excess

    def knn(
        self,
        vector: Sequence[float],
        *,
        threshold: float = DEFAULT_POLICY.semantic_threshold,
        limit: int = DEFAULT_POLICY.strategy_limit,
    ) -> list[tuple[VectorEntry, float]]:
        """Entries with cosine similarity >= *threshold*, best first."""
        with self._lock:
            candidates = [e for e in self._entries.values() if len(e.vector) == len(vector)]
        if not candidates or len(vector) == 0:
            return []

        query = np.asarray(vector, dtype=np.float64)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []
        matrix = np.asarray([e.vector for e in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, dots / (norms * query_norm), 0.0)

        hits = [
            (entry, float(score))
            for entry, score in zip(candidates, scores)
            if float(score) >= threshold
        ]
        hits.sort(key=lambda hit: (-hit[1], hit[0].id))
        return hits[: max(limit, 0)]

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "collection_id": self.collection_id,
                "max_size": self.max_size,
                "entries": [
                    {
                        "id": e.id,
                        "vector": encode_vector(e.vector),
                        "text": e.text,
                        "author": e.author,
                        "likes": e.likes,
                        "replies": e.replies,
                        "sentiment": e.sentiment,
                        "stored_at": e.stored_at,
                    }
                    for e in self._entries.values()
                ],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VectorCollection:
        collection = cls(
            str(data["collection_id"]),
            max_size=int(data.get("max_size", DEFAULT_POLICY.collection_max_size)),
        )
        collection.insert_batch(
            VectorEntry(
                id=str(raw["id"]),
                vector=decode_vector(raw["vector"]),
                text=str(raw.get("text", "")),
                author=raw.get("author"),
                likes=int(raw.get("likes", 0)),
                replies=int(raw.get("replies", 0)),
                sentiment=float(raw.get("sentiment", 0.0)),
                stored_at=float(raw.get("stored_at", 0.0)),
            )
            for raw in data.get("entries", [])
        )
        return collection


class CollectionRepository:
    """Load collections lazily from the store and save them on request."""

    def __init__(
        self,
        store: KeyValueStore,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.policy = policy
        self._clock = clock
        self._collections: dict[str, VectorCollection] = {}
        self._lock = threading.Lock()

    def get(self, collection_id: str) -> VectorCollection:
        with self._lock:
            collection = self._collections.get(collection_id)
            if collection is None:
                collection = self._load(collection_id)
                self._collections[collection_id] = collection
            return collection

    def _load(self, collection_id: str) -> VectorCollection:
        raw = self.store.get(COLLECTION_PREFIX + collection_id)
        if raw is not None:
            try:
                collection = VectorCollection.from_dict(json.loads(raw.decode("utf-8")))
                collection.max_size = self.policy.collection_max_size
                collection.prune()
                return collection
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Ignoring unreadable collection %s: %s", collection_id, exc)
        return VectorCollection(collection_id, max_size=self.policy.collection_max_size)

    def save(self, collection_id: str) -> bool:
        with self._lock:
            collection = self._collections.get(collection_id)
        if collection is None:
            return False
        payload = json.dumps(collection.to_dict()).encode("utf-8")
        try:
            self.store.set(COLLECTION_PREFIX + collection_id, payload)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning(
                "Could not save collection %s (%d bytes): %s",
                collection_id,
                len(payload),
                exc,
            )
            return False
        return True

    def save_all(self) -> int:
        with self._lock:
            ids = list(self._collections)
        return sum(1 for collection_id in ids if self.save(collection_id))

    def stored_ids(self) -> list[str]:
        return [key[len(COLLECTION_PREFIX):] for key in self.store.keys(COLLECTION_PREFIX)]

    def make_entry(
        self,
        *,
        entry_id: str,
        vector: Sequence[float],
        text: str,
        author: str | None = None,
        likes: int = 0,
        replies: int = 0,
        sentiment: float | None = None,
        stored_at: float | None = None,
    ) -> VectorEntry:
        return VectorEntry(
            id=entry_id,
            vector=tuple(float(v) for v in vector),
            text=text,
            author=author,
            likes=likes,
            replies=replies,
            sentiment=sentiment or 0.0,
            stored_at=self._clock() if stored_at is None else stored_at,
        )
