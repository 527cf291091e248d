"""
Fingerprint-keyed embedding cache on top of a key-value store.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import time
from typing import Callable, Sequence

from .models import CacheEntryStatus, EmbeddingRecord
from .policy import DEFAULT_POLICY, ScoringPolicy
from .storage import RECOVERABLE_STORAGE_ERRORS, KeyValueStore, StorageCapacityError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "embedding:"

_WHITESPACE = re.compile(r"\s+")


def fingerprint(text: str, prefix_chars: int = DEFAULT_POLICY.fingerprint_prefix_chars) -> str:
    """Stable 16-hex-char key for the normalised leading text of a comment."""
    normalized = _WHITESPACE.sub(" ", text.strip()).lower()[:prefix_chars]
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:16]


def assess_vector_quality(
    vector: Sequence[float],
    provider_id: str,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> float:
    """Quality in [0, 1] from provider provenance; degenerate vectors score 0."""
    if not vector:
        return 0.0
    norm = math.sqrt(sum(float(v) * float(v) for v in vector))
    if norm == 0.0 or math.isnan(norm):
        return 0.0
    return policy.provider_quality.get(provider_id, policy.default_provider_quality)


class EmbeddingCacheStore:
    """Read, write and validate cached embedding records."""

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

    def fingerprint(self, text: str) -> str:
        return fingerprint(text, self.policy.fingerprint_prefix_chars)

    def get(self, key: str) -> EmbeddingRecord | None:
        try:
            raw = self.store.get(CACHE_PREFIX + key)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning("Cache read failed for %s, treating as a miss: %r", key, exc)
            return None
        if raw is None:
            return None
        try:
            return EmbeddingRecord.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache record %s: %s", key, exc)
            self.invalidate(key)
            return None

    def put(self, record: EmbeddingRecord) -> bool:
        """Store a record. Returns False when the write cannot be completed.

        A full store is pruned once and the write retried; any other storage
        failure leaves the record uncached.
        """
        payload = json.dumps(record.to_dict()).encode("utf-8")
        key = CACHE_PREFIX + record.fingerprint
        try:
            self.store.set(key, payload)
            return True
        except StorageCapacityError as exc:
            logger.info("Cache store full (%s); pruning oldest records", exc)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            self._log_dropped_write(record, payload, exc)
            return False
        try:
            self.prune_oldest(self.policy.cache_prune_fraction)
            self.store.set(key, payload)
            return True
        except RECOVERABLE_STORAGE_ERRORS as exc:
            self._log_dropped_write(record, payload, exc)
            return False

    @staticmethod
    def _log_dropped_write(record: EmbeddingRecord, payload: bytes, exc: Exception) -> None:
        logger.warning(
            "Dropping cache write for %s: %d bytes, %r",
            record.fingerprint,
            len(payload),
            exc,
        )

    def invalidate(self, key: str) -> bool:
        try:
            return self.store.remove(CACHE_PREFIX + key)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning("Could not invalidate cache record %s: %r", key, exc)
            return False

    def status(
        self,
        key: str,
        *,
        max_age: float | None = None,
        quality_floor: float | None = None,
    ) -> CacheEntryStatus:
        max_age = self.policy.cache_max_age if max_age is None else max_age
        quality_floor = (
            self.policy.cache_quality_floor if quality_floor is None else quality_floor
        )
        record = self.get(key)
        if record is None:
            return CacheEntryStatus(exists=False)

        age = max(0.0, self._clock() - record.created_at)
        is_valid = record.quality >= quality_floor and age < max_age
        should_refresh = not is_valid or (
            age > self.policy.cache_refresh_age_ratio * max_age
            and record.quality < self.policy.cache_refresh_quality
        )
        return CacheEntryStatus(
            exists=True,
            age=age,
            quality=record.quality,
            is_valid=is_valid,
            should_refresh=should_refresh,
        )

    def prune_oldest(self, fraction: float) -> int:
        """Remove the oldest *fraction* of cache records (at least one)."""
        keys = self.store.keys(CACHE_PREFIX)
        if not keys:
            return 0
        count = max(1, int(len(keys) * fraction))
        for key in keys[:count]:
            self.store.remove(key)
        logger.info("Pruned %d of %d cached embeddings", count, len(keys))
        return count

    def size(self) -> int:
        return len(self.store.keys(CACHE_PREFIX))
