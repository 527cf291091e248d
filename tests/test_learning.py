"""Tests for the learning store and adaptation loop."""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from commentscope.learning import AdaptiveLearningLoop, LearningStore
from commentscope.models import Decision
from commentscope.policy import DAY, DEFAULT_POLICY
from commentscope.storage import DuckDBKeyValueStore

from conftest import BrokenDiskStore, FakeClock


def _decision(clock: FakeClock, fp: str, *, embed: bool = True) -> Decision:
    return Decision(
        should_embed=embed,
        action="compute" if embed else "skip",
        confidence=0.8,
        reason="high_value" if embed else "low_quality",
        score=0.8,
        fingerprint=fp,
        decided_at=clock(),
    )


def _record_decisions(learning: LearningStore, clock: FakeClock, *, useful: bool) -> None:
    for i in range(10):
        learning.record_decision(_decision(clock, f"fp{i}"))
        learning.record_embedding_usage(f"fp{i}", useful)


def _record_searches(learning: LearningStore, strategy: str, confidence: float) -> None:
    for _ in range(10):
        learning.record_search_performance(
            query="how do I fix the audio",
            intent="technical",
            strategies=[strategy],
            confidences=[confidence],
            top_score=confidence,
        )


# ---------------------------------------------------------------------------
# Learning store
# ---------------------------------------------------------------------------


def test_search_relevance_grows_with_repeats() -> None:
    learning = LearningStore(clock=FakeClock())
    for _ in range(5):
        learning.record_search("fix audio problem", "technical")

    assert learning.search_relevance("fix audio problem") == pytest.approx(0.5)
    assert learning.search_relevance("totally unrelated words") == 0.0
    assert learning.search_relevance("") == 0.0


def test_usage_marks_latest_matching_decision() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    learning.record_decision(_decision(clock, "fp"))

    assert learning.record_embedding_usage("fp", True) is True
    assert learning.record_embedding_usage("missing", True) is False
    assert learning.recent_decisions(DAY)[0].useful is True


def test_strategy_success_rates() -> None:
    learning = LearningStore(clock=FakeClock())
    assert learning.strategy_success_rate("semantic") == 0.5

    _record_searches(learning, "semantic", 0.9)
    _record_searches(learning, "exact", 0.1)

    assert learning.strategy_success_rate("semantic") == 1.0
    assert learning.strategy_success_rate("semantic", "technical") == 1.0
    assert learning.strategy_success_rate("exact") == 0.0
    assert learning.strategy_success_rate("exact", "opinion") == 0.5


def test_prune_drops_old_records() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    learning.record_decision(_decision(clock, "old"))
    learning.record_search("old query", "unknown")

    clock.advance(8 * DAY)
    learning.record_decision(_decision(clock, "new"))

    assert learning.prune() == 2
    assert [d.fingerprint for d in learning.recent_decisions(30 * DAY)] == ["new"]


def test_persist_and_load_roundtrip(store: DuckDBKeyValueStore) -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    learning.set_importance_threshold(0.8)
    learning.record_decision(_decision(clock, "fp"))
    learning.record_search("fix audio", "technical")
    _record_searches(learning, "semantic", 0.9)

    assert learning.persist(store) is True

    restored = LearningStore(clock=clock)
    assert restored.load(store) is True
    assert restored.to_dict() == learning.to_dict()
    assert restored.importance_threshold == 0.8


def test_load_without_state() -> None:
    kv = DuckDBKeyValueStore(":memory:")
    try:
        assert LearningStore().load(kv) is False
    finally:
        kv.close()


# ---------------------------------------------------------------------------
# Adaptation loop
# ---------------------------------------------------------------------------


def test_threshold_rises_when_embeddings_go_unused() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    _record_decisions(learning, clock, useful=False)

    report = AdaptiveLearningLoop(learning).run_once()

    assert report.decision_success_rate == 0.0
    assert report.importance_threshold == pytest.approx(0.75)
    assert report.persisted is False


def test_threshold_falls_when_embeddings_are_used() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    _record_decisions(learning, clock, useful=True)

    report = AdaptiveLearningLoop(learning).run_once()

    assert report.decision_success_rate == 1.0
    assert learning.importance_threshold == pytest.approx(0.65)


def test_threshold_is_clamped() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    learning.set_importance_threshold(0.9)
    _record_decisions(learning, clock, useful=False)

    AdaptiveLearningLoop(learning).run_once()

    assert learning.importance_threshold == pytest.approx(0.9)


def test_too_few_decisions_leave_threshold_alone() -> None:
    clock = FakeClock()
    learning = LearningStore(clock=clock)
    learning.record_decision(_decision(clock, "fp"))

    report = AdaptiveLearningLoop(learning).run_once()

    assert report.decision_success_rate is None
    assert report.importance_threshold == 0.7


def test_strategy_weights_adapt_and_normalise() -> None:
    learning = LearningStore(clock=FakeClock())
    _record_searches(learning, "semantic", 0.9)
    _record_searches(learning, "exact", 0.1)

    report = AdaptiveLearningLoop(learning).run_once()

    weights = report.strategy_weights
    total = 0.44 + 0.27 + 0.2 + 0.1
    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights["semantic"] == pytest.approx(0.44 / total)
    assert weights["exact"] == pytest.approx(0.27 / total)
    assert weights["contextual"] == pytest.approx(0.2 / total)


def test_strategy_weight_factors_come_from_policy() -> None:
    policy = replace(DEFAULT_POLICY, strategy_boost_factor=1.2, strategy_penalty_factor=0.5)
    learning = LearningStore(policy, clock=FakeClock())
    _record_searches(learning, "semantic", 0.9)
    _record_searches(learning, "exact", 0.1)

    weights = AdaptiveLearningLoop(learning, policy=policy).run_once().strategy_weights

    total = 0.48 + 0.15 + 0.2 + 0.1
    assert weights["semantic"] == pytest.approx(0.48 / total)
    assert weights["exact"] == pytest.approx(0.15 / total)


def test_persist_reports_disk_failure() -> None:
    kv = BrokenDiskStore()
    try:
        learning = LearningStore(clock=FakeClock())

        assert learning.persist(kv) is False
        assert AdaptiveLearningLoop(learning, store=kv).run_once().persisted is False
    finally:
        kv.close()


def test_run_once_persists_to_store(store: DuckDBKeyValueStore) -> None:
    learning = LearningStore(clock=FakeClock())

    report = AdaptiveLearningLoop(learning, store=store).run_once()

    assert report.persisted is True
    assert store.get("learning:state") is not None


def test_background_loop_start_and_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    loop = AdaptiveLearningLoop(LearningStore())
    ran = threading.Event()

    def run_once():
        ran.set()

    monkeypatch.setattr(loop, "run_once", run_once)

    loop.start(interval=0.01)
    assert ran.wait(2)
    assert loop.running is True

    loop.stop()
    assert loop.running is False


def test_background_loop_survives_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    loop = AdaptiveLearningLoop(LearningStore())
    calls: list[int] = []
    second_pass = threading.Event()

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("store unavailable")
        second_pass.set()

    monkeypatch.setattr(loop, "run_once", flaky)

    loop.start(interval=0.01)
    try:
        assert second_pass.wait(2)
    finally:
        loop.stop()
