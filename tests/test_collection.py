"""Tests for vector collections, their persistence and pattern exemplars."""

from __future__ import annotations

import pytest

from commentscope.collection import (
    COLLECTION_PREFIX,
    CollectionRepository,
    VectorCollection,
    cosine_similarity,
)
from commentscope.embeddings import LocalDeterministicProvider
from commentscope.models import VectorEntry
from commentscope.patterns import DEFAULT_EXAMPLES, PatternLibrary, detect_patterns
from commentscope.scoring import estimate_tokens
from commentscope.storage import DuckDBKeyValueStore

from conftest import BrokenDiskStore, FailingProvider, FakeClock, build_decision_engine


def _entry(entry_id: str, vector, stored_at: float = 0.0, **kwargs) -> VectorEntry:
    return VectorEntry(
        id=entry_id,
        vector=tuple(float(v) for v in vector),
        text=kwargs.pop("text", f"comment {entry_id}"),
        stored_at=stored_at,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Cosine similarity
# ---------------------------------------------------------------------------


def test_cosine_similarity_properties() -> None:
    a = [1.0, 2.0, 3.0]
    b = [3.0, -1.0, 0.5]

    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_similarity_degenerate_inputs() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


# ---------------------------------------------------------------------------
# Collection behaviour
# ---------------------------------------------------------------------------


def test_insert_ignores_duplicate_ids() -> None:
    collection = VectorCollection("video-1")

    assert collection.insert(_entry("c1", [1, 0])) is True
    assert collection.insert(_entry("c1", [0, 1])) is False
    assert len(collection) == 1
    assert collection.get("c1").vector == (1.0, 0.0)
    assert "c1" in collection


def test_knn_threshold_order_and_limit() -> None:
    collection = VectorCollection("video-1")
    collection.insert_batch(
        [
            _entry("exact", [1, 0]),
            _entry("close", [0.9, 0.1]),
            _entry("far", [0, 1]),
            _entry("wrong-dim", [1, 0, 0]),
        ]
    )

    hits = collection.knn([1, 0], threshold=0.5, limit=10)

    assert [entry.id for entry, _ in hits] == ["exact", "close"]
    assert hits[0][1] == pytest.approx(1.0)
    assert hits[1][1] < 1.0
    assert len(collection.knn([1, 0], threshold=0.5, limit=1)) == 1
    assert collection.knn([0, 0], threshold=0.0) == []


def test_knn_ties_break_by_id() -> None:
    collection = VectorCollection("video-1")
    collection.insert_batch([_entry("b", [1, 0]), _entry("a", [2, 0])])

    hits = collection.knn([1, 0], threshold=0.0)

    assert [entry.id for entry, _ in hits] == ["a", "b"]


def test_collection_caps_size_by_dropping_oldest() -> None:
    collection = VectorCollection("video-1", max_size=1000)

    for i in range(1200):
        collection.insert(_entry(f"c{i}", [1, 0], stored_at=float(i)))

    assert len(collection) == 1000
    assert "c0" not in collection
    assert "c199" not in collection
    assert {e.id for e in collection.entries()} == {f"c{i}" for i in range(200, 1200)}


def test_prune_to_explicit_size() -> None:
    collection = VectorCollection("video-1")
    collection.insert_batch(_entry(f"c{i}", [1, 0], stored_at=float(i)) for i in range(5))

    assert collection.prune(2) == 3
    assert {e.id for e in collection.entries()} == {"c3", "c4"}
    assert collection.prune(2) == 0


# ---------------------------------------------------------------------------
# Repository persistence
# ---------------------------------------------------------------------------


def test_repository_roundtrip(store: DuckDBKeyValueStore, clock: FakeClock) -> None:
    repository = CollectionRepository(store, clock=clock)
    collection = repository.get("video-1")
    collection.insert(
        repository.make_entry(
            entry_id="c1",
            vector=[0.25, -0.5, 1.0],
            text="audio was broken, how to fix?",
            author="sam",
            likes=4,
            replies=1,
            sentiment=-0.4,
        )
    )
    assert repository.save("video-1") is True

    reloaded = CollectionRepository(store, clock=clock).get("video-1")

    assert reloaded.get("c1") == collection.get("c1")
    assert reloaded.get("c1").stored_at == clock()
    assert repository.stored_ids() == ["video-1"]


def test_repository_ignores_unreadable_collection(
    store: DuckDBKeyValueStore, clock: FakeClock
) -> None:
    store.set(COLLECTION_PREFIX + "video-1", b"{broken")

    collection = CollectionRepository(store, clock=clock).get("video-1")

    assert len(collection) == 0


def test_save_unknown_collection_is_noop(store: DuckDBKeyValueStore, clock: FakeClock) -> None:
    assert CollectionRepository(store, clock=clock).save("missing") is False


def test_save_survives_disk_error(clock: FakeClock) -> None:
    kv = BrokenDiskStore()
    try:
        repository = CollectionRepository(kv, clock=clock)
        repository.get("video-1").insert(_entry("c1", [1.0, 0.0]))

        assert repository.save("video-1") is False
        assert repository.save_all() == 0
        assert len(repository.get("video-1")) == 1
    finally:
        kv.close()


# ---------------------------------------------------------------------------
# Pattern exemplars
# ---------------------------------------------------------------------------


def test_detect_patterns() -> None:
    assert "business_opportunity" in detect_patterns("I would pay for a course on this")
    assert "question" in detect_patterns("how does this work?")
    assert detect_patterns("lovely sunset") == []


def test_pattern_library_seeds_defaults(store: DuckDBKeyValueStore, clock: FakeClock) -> None:
    engine = build_decision_engine(store, clock, provider=LocalDeterministicProvider(dim=32))
    library = PatternLibrary(store, engine.embed_examples, clock=clock)

    assert library.ensure_defaults() == len(DEFAULT_EXAMPLES)
    assert library.ensure_defaults() == 0
    assert sorted(library.names()) == sorted(DEFAULT_EXAMPLES)

    exemplar = library.get("praise")
    assert exemplar is not None
    assert len(exemplar.vector) == 32
    assert exemplar.examples == DEFAULT_EXAMPLES["praise"]
    expected_tokens = sum(
        estimate_tokens(text) for examples in DEFAULT_EXAMPLES.values() for text in examples
    )
    assert engine.quota.usage("minute") == expected_tokens


def test_pattern_library_falls_back_on_provider_error(
    store: DuckDBKeyValueStore, clock: FakeClock
) -> None:
    engine = build_decision_engine(store, clock, provider=FailingProvider(dim=32))
    library = PatternLibrary(store, engine.embed_examples, clock=clock)

    exemplar = library.put("custom", ["please add dark mode"])

    assert exemplar is not None
    assert len(exemplar.vector) == 32


def test_pattern_requires_examples(store: DuckDBKeyValueStore, clock: FakeClock) -> None:
    provider = LocalDeterministicProvider(dim=32)
    library = PatternLibrary(store, provider.generate_batch_embeddings, clock=clock)

    with pytest.raises(ValueError):
        library.put("empty", [])


def test_pattern_without_embeddings_is_not_stored(
    store: DuckDBKeyValueStore, clock: FakeClock
) -> None:
    library = PatternLibrary(store, lambda texts: None, clock=clock)

    assert library.put("custom", ["please add dark mode"]) is None
    assert library.get("custom") is None
    assert library.ensure_defaults() == 0
