"""Tests for text quality, importance and cost/benefit scoring."""

from __future__ import annotations

from dataclasses import replace

import pytest

from commentscope.cache import EmbeddingCacheStore
from commentscope.models import EmbeddingRecord, SourceContext
from commentscope.policy import DEFAULT_POLICY
from commentscope.scoring import (
    CostBenefitEstimator,
    ImportanceScorer,
    TextQualityScorer,
    estimate_tokens,
    generality,
)
from commentscope.storage import DuckDBKeyValueStore

from conftest import FakeClock


# ---------------------------------------------------------------------------
# Text quality
# ---------------------------------------------------------------------------


def test_structural_score_counts_all_indicators() -> None:
    text = (
        "What is the API? See https://example.io for 2 examples. "
        "This is a longer sentence with many more words in it."
    )
    assert TextQualityScorer.structural_score(text) == pytest.approx(1.0)


def test_structural_score_of_plain_text() -> None:
    assert TextQualityScorer.structural_score("ok") == 0.0


def test_quality_overall_formula() -> None:
    quality = TextQualityScorer().score("hello world")

    assert quality.length == 11
    assert quality.word_count == 2
    assert quality.unique_word_ratio == 1.0
    assert quality.overall == pytest.approx(0.2 * 11 / 500 + 0.2 * 2 / 50 + 0.3)


def test_repetitive_text_scores_low() -> None:
    quality = TextQualityScorer().score("aaa aaa aaa aaa aaa aaa aaa")
    assert quality.overall < 0.3


# ---------------------------------------------------------------------------
# Importance
# ---------------------------------------------------------------------------


def test_neutral_text_has_no_importance() -> None:
    assert ImportanceScorer().score("nothing special here at all", SourceContext()) == 0.0


def test_context_flags_accumulate() -> None:
    context = SourceContext(is_business_opportunity=True, is_question=True)
    score = ImportanceScorer().score("nothing special here at all", context)
    assert score == pytest.approx(0.5)


def test_high_engagement_counts_once() -> None:
    context = SourceContext(likes=500, replies=10)
    score = ImportanceScorer().score("nothing special here at all", context)
    assert score == pytest.approx(0.2)


def test_content_families_and_clamp() -> None:
    text = "How do I buy this? Please help, the price is a problem"
    scorer = ImportanceScorer()

    assert scorer.matched_families(text) == [
        "transactional",
        "educational",
        "problem_report",
        "help_request",
    ]
    assert scorer.score(text, SourceContext(is_question=True)) == 1.0


def test_content_family_weights_come_from_policy() -> None:
    policy = replace(DEFAULT_POLICY, content_family_weights={"transactional": 0.05})

    assert ImportanceScorer().score("what does it cost", SourceContext()) == pytest.approx(0.3)
    assert ImportanceScorer(policy).score("what does it cost", SourceContext()) == pytest.approx(
        0.05
    )


def test_search_relevance_feeds_importance() -> None:
    scorer = ImportanceScorer(search_relevance=lambda text: 1.0)
    score = scorer.score("nothing special here at all", SourceContext())
    assert score == pytest.approx(0.3)


# ---------------------------------------------------------------------------
# Cost/benefit
# ---------------------------------------------------------------------------


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("a" * 40) == 10
    assert estimate_tokens("a" * 41) == 11


def test_generality() -> None:
    assert generality("best tips for beginners") == 0.8
    assert generality("at minute three he drops it") == 0.2
    assert generality("hello there") == 0.5

    policy = replace(DEFAULT_POLICY, generality_general=0.6, generality_mixed=0.4)
    assert generality("best tips for beginners", policy) == 0.6
    assert generality("hello there", policy) == 0.4


def test_satisfaction_scales_come_from_policy() -> None:
    context = SourceContext(likes=10, replies=1)
    policy = replace(DEFAULT_POLICY, satisfaction_likes_scale=20.0)

    default = CostBenefitEstimator().estimate("a" * 40, context, importance=0.5)
    tuned = CostBenefitEstimator(policy).estimate("a" * 40, context, importance=0.5)

    assert default.benefits["user_satisfaction"] == pytest.approx(0.2)
    assert tuned.benefits["user_satisfaction"] == pytest.approx(0.6)
    assert tuned.benefits["search_improvement"] == pytest.approx(0.25)


def test_cost_benefit_uses_minimum_cost() -> None:
    estimate = CostBenefitEstimator().estimate("a" * 40, SourceContext(), importance=0.0)

    assert estimate.costs["tokens"] == 10
    assert estimate.costs["api"] == pytest.approx(10 * 0.0001 / 1000)
    # Learning value: default similarity 0.3, no context.
    assert estimate.benefits["learning_value"] == pytest.approx(0.35)
    total = sum(estimate.benefits.values())
    assert estimate.ratio == pytest.approx(total / 0.001)
    assert estimate.recommendation == "embed"


def test_cached_text_has_no_learning_uniqueness(
    store: DuckDBKeyValueStore, clock: FakeClock
) -> None:
    cache = EmbeddingCacheStore(store, clock=clock)
    text = "A comment we already embedded"
    cache.put(
        EmbeddingRecord(
            fingerprint=cache.fingerprint(text),
            vector=(1.0, 0.0),
            dimension=2,
            created_at=clock(),
            quality=0.95,
            provider_id="gemini",
        )
    )

    estimate = CostBenefitEstimator(cache=cache).estimate(
        text, SourceContext(likes=10), importance=0.5
    )

    assert estimate.benefits["learning_value"] == pytest.approx((0.0 + 0.1) / 2)
    assert estimate.benefits["search_improvement"] == pytest.approx(0.25)
    assert estimate.benefits["user_satisfaction"] == pytest.approx(0.1)
