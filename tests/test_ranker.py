"""Tests for result ranking and snippets."""

from __future__ import annotations

from dataclasses import replace

import pytest

from commentscope.models import Candidate, VectorEntry
from commentscope.policy import DAY, DEFAULT_POLICY
from commentscope.search import ContextSnapshotBuilder, RankingEngine, classify_intent, generate_snippet

from conftest import FakeClock

TEXTS = [
    "Replacing the cable fixed my crackling audio",
    "Updating drivers solved every audio glitch",
    "Lowering buffer sizes removed the stutter",
    "Switching sample rates cured popping sounds",
    "Disabling enhancements stopped static noise",
    "Reinstalling firmware repaired broken output",
    "Grounding equipment eliminated humming entirely",
    "Resetting preferences restored normal playback",
]


def _candidates(clock: FakeClock) -> list[Candidate]:
    authors = ["ann", "ann", "ann", "ben", "cat", "dan", "eve", "fay"]
    return [
        Candidate(
            entry=VectorEntry(
                id=f"c{i}",
                vector=(1.0, 0.0),
                text=text,
                author=author,
                stored_at=clock(),
            ),
            similarity=0.95 - 0.05 * i,
            strategies=("semantic",),
            strategy_weight=0.3,
        )
        for i, (text, author) in enumerate(zip(TEXTS, authors))
    ]


def test_snippet_prefers_sentence_with_query_terms() -> None:
    text = "Nice video overall. The audio fix was to swap the cable! Thanks."

    assert generate_snippet(text, "audio fix") == "The audio fix was to swap the cable"


def test_snippet_truncates_long_text() -> None:
    snippet = generate_snippet("word " * 100, "nothing")

    assert len(snippet) == 150
    assert snippet.endswith("...")


def test_rank_empty() -> None:
    engine = RankingEngine(clock=FakeClock())
    snapshot = ContextSnapshotBuilder().build([])

    assert engine.rank([], query="x", intent=classify_intent("x"), snapshot=snapshot) == []


def test_first_five_results_have_distinct_authors() -> None:
    clock = FakeClock()
    candidates = _candidates(clock)
    engine = RankingEngine(clock=clock)
    snapshot = ContextSnapshotBuilder().build([c.entry for c in candidates])

    results = engine.rank(
        candidates,
        query="fix audio",
        intent=classify_intent("fix audio"),
        snapshot=snapshot,
    )

    authors = [r.candidate.entry.author for r in results[:5]]
    assert len(set(authors)) == 5
    assert [r.rank for r in results] == list(range(1, len(results) + 1))


def test_max_results_truncates() -> None:
    clock = FakeClock()
    candidates = _candidates(clock)
    engine = RankingEngine(clock=clock)
    snapshot = ContextSnapshotBuilder().build([c.entry for c in candidates])

    results = engine.rank(
        candidates,
        query="fix audio",
        intent=classify_intent("fix audio"),
        snapshot=snapshot,
        max_results=3,
    )

    assert len(results) == 3


def test_scores_blend_by_intent_weights() -> None:
    clock = FakeClock()
    candidates = _candidates(clock)[:1]
    engine = RankingEngine(clock=clock)
    intent = classify_intent("fix audio")
    snapshot = ContextSnapshotBuilder().build([c.entry for c in candidates])

    [result] = engine.rank(candidates, query="fix audio", intent=intent, snapshot=snapshot)

    weights = DEFAULT_POLICY.intent_weights[intent.type]
    expected = sum(weights[name] * value for name, value in result.scores.as_dict().items())
    assert result.final_score == pytest.approx(expected)
    assert result.confidence == pytest.approx(
        min(1.0, 0.6 * result.scores.relevance + 0.4 * 0.95)
    )
    assert result.scores.recency == pytest.approx(1.0)
    assert "semantic" in result.explanation


def test_recency_halves_every_week() -> None:
    clock = FakeClock()
    old = Candidate(
        entry=VectorEntry(id="old", vector=(1.0,), text="old comment", stored_at=clock() - 7 * DAY),
        similarity=0.9,
        strategies=("semantic",),
    )
    engine = RankingEngine(clock=clock)
    snapshot = ContextSnapshotBuilder().build([old.entry])

    [result] = engine.rank([old], query="old", intent=classify_intent("old"), snapshot=snapshot)

    assert result.scores.recency == pytest.approx(0.5)


def test_engagement_score() -> None:
    clock = FakeClock()
    popular = Candidate(
        entry=VectorEntry(
            id="p", vector=(1.0,), text="popular comment", likes=250, replies=5, stored_at=clock()
        ),
        similarity=0.9,
        strategies=("exact",),
    )
    engine = RankingEngine(clock=clock)
    snapshot = ContextSnapshotBuilder().build([popular.entry])

    [result] = engine.rank([popular], query="popular", intent=classify_intent("popular"), snapshot=snapshot)

    assert result.scores.engagement == pytest.approx(0.7 + 0.15)


def test_ranking_weights_come_from_policy() -> None:
    clock = FakeClock()
    popular = Candidate(
        entry=VectorEntry(
            id="p", vector=(1.0,), text="popular comment", likes=250, replies=5, stored_at=clock()
        ),
        similarity=0.9,
        strategies=("exact",),
    )
    policy = replace(
        DEFAULT_POLICY,
        engagement_likes_weight=0.5,
        engagement_replies_weight=0.5,
        confidence_relevance_weight=0.0,
        confidence_similarity_weight=1.0,
        diversity_author_share=0.0,
        diversity_topic_share=0.25,
    )
    engine = RankingEngine(policy, clock=clock)
    snapshot = ContextSnapshotBuilder(policy).build([popular.entry])

    [result] = engine.rank(
        [popular], query="popular", intent=classify_intent("popular"), snapshot=snapshot
    )

    assert result.scores.engagement == pytest.approx(0.5 + 0.25)
    assert result.confidence == pytest.approx(0.9)
    assert result.scores.diversity == pytest.approx(0.25)
