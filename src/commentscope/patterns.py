"""
Named exemplar vectors for pattern-based retrieval.

Each pattern is the mean embedding of a handful of example comments. The
library seeds the built-in patterns when the engine starts and keeps them in the
key-value store under ``pattern:<name>``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .collection import decode_vector, encode_vector
from .storage import RECOVERABLE_STORAGE_ERRORS, KeyValueStore

logger = logging.getLogger(__name__)

PATTERN_PREFIX = "pattern:"

DEFAULT_EXAMPLES: dict[str, tuple[str, ...]] = {
    "business_opportunity": (
        "I would pay for this",
        "Please create a course on this topic",
        "Where can I buy this product",
        "Is this available for purchase",
        "I need this for my business",
        "Can you offer this as a service",
    ),
    "feature_request": (
        "It would be great if you could add",
        "Can you please include",
        "Feature request",
        "Would love to see",
        "Please consider adding",
        "This needs",
    ),
    "complaint": (
        "This doesn't work",
        "I'm disappointed",
        "Very poor quality",
        "Waste of time",
        "Not as advertised",
        "Terrible experience",
    ),
    "praise": (
        "Amazing content",
        "This helped me so much",
        "Best explanation ever",
        "Thank you for this",
        "Incredible work",
        "Life changing",
    ),
    "question": (
        "How do you",
        "Can you explain",
        "What is the",
        "Where can I find",
        "Why does this",
        "When should I",
    ),
    "controversy": (
        "I disagree with",
        "This is wrong",
        "Actually, the correct",
        "You're mistaken about",
        "This is misleading",
        "Facts are different",
    ),
}

PATTERN_TRIGGERS: dict[str, re.Pattern[str]] = {
    "business_opportunity": re.compile(
        r"pay|buy|purchase|price|cost|course|service|business|monetiz|sell", re.IGNORECASE
    ),
    "feature_request": re.compile(
        r"\badd\b|include|feature|request|would love|please consider", re.IGNORECASE
    ),
    "complaint": re.compile(
        r"doesn't work|not work|disappoint|poor|waste|terrible|broken|problem|issue|bug",
        re.IGNORECASE,
    ),
    "praise": re.compile(r"amazing|helped|best|thank|incredible|great|awesome", re.IGNORECASE),
    "question": re.compile(r"\?|\bhow\b|\bwhat\b|\bwhere\b|\bwhy\b|\bwhen\b", re.IGNORECASE),
    "controversy": re.compile(r"disagree|wrong|mistaken|misleading|incorrect", re.IGNORECASE),
}


@dataclass(frozen=True)
class PatternExemplar:
    name: str
    vector: tuple[float, ...]
    examples: tuple[str, ...]
    updated_at: float


def detect_patterns(query: str) -> list[str]:
    """Pattern names whose trigger words appear in *query*."""
    return [name for name, trigger in PATTERN_TRIGGERS.items() if trigger.search(query)]


class PatternLibrary:
    """Store and look up named exemplar vectors.

    *embed* turns example texts into vectors, or returns None when no
    provider could embed them.
    """

    def __init__(
        self,
        store: KeyValueStore,
        embed: Callable[[list[str]], list[list[float]] | None],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self._embed = embed
        self._clock = clock

    def get(self, name: str) -> PatternExemplar | None:
        try:
            raw = self.store.get(PATTERN_PREFIX + name)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning("Could not read pattern %s: %r", name, exc)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw.decode("utf-8"))
            return PatternExemplar(
                name=name,
                vector=decode_vector(data["vector"]),
                examples=tuple(data.get("examples", [])),
                updated_at=float(data.get("updated_at", 0.0)),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable pattern %s: %s", name, exc)
            return None

    def put(self, name: str, examples: list[str] | tuple[str, ...]) -> PatternExemplar | None:
        """Embed *examples*, average them and store the exemplar."""
        if not examples:
            raise ValueError(f"Pattern {name!r} needs at least one example.")
        texts = list(examples)
        vectors = self._embed(texts)
        if not vectors:
            logger.warning("No embeddings for pattern %s; not stored", name)
            return None

        mean = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
        exemplar = PatternExemplar(
            name=name,
            vector=tuple(float(v) for v in mean),
            examples=tuple(texts),
            updated_at=self._clock(),
        )
        payload = json.dumps(
            {
                "vector": encode_vector(exemplar.vector),
                "examples": list(exemplar.examples),
                "updated_at": exemplar.updated_at,
            }
        ).encode("utf-8")
        try:
            self.store.set(PATTERN_PREFIX + name, payload)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning("Could not store pattern %s (%d bytes): %s", name, len(payload), exc)
            return None
        return exemplar

    def ensure_defaults(self) -> int:
        """Seed any built-in pattern that is missing. Returns how many were added."""
        added = 0
        for name, examples in DEFAULT_EXAMPLES.items():
            if self.get(name) is None and self.put(name, examples) is not None:
                added += 1
        if added:
            logger.info("Seeded %d default pattern exemplars", added)
        return added

    def names(self) -> list[str]:
        return [key[len(PATTERN_PREFIX):] for key in self.store.keys(PATTERN_PREFIX)]
