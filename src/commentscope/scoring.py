"""
Factor scorers feeding the embedding decision: text quality, importance and
cost/benefit.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Callable

from .cache import EmbeddingCacheStore
from .models import SourceContext
from .policy import DEFAULT_POLICY, ScoringPolicy
from .text import sentences, unique_word_ratio, words

TECHNICAL_TERMS = re.compile(
    r"API|SDK|JSON|HTML|CSS|JavaScript|Python|database|algorithm|function|variable",
    re.IGNORECASE,
)
_URL = re.compile(r"https?://")
_DIGIT = re.compile(r"\d")

CONTENT_FAMILIES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("transactional", re.compile(r"pay|buy|purchase|cost|price", re.IGNORECASE)),
    ("educational", re.compile(r"tutorial|guide|how|learn|teach", re.IGNORECASE)),
    ("problem_report", re.compile(r"problem|issue|bug|error|fix", re.IGNORECASE)),
    ("opinion", re.compile(r"love|hate|best|worst", re.IGNORECASE)),
    ("help_request", re.compile(r"\?|help|please|need", re.IGNORECASE)),
)

_GENERAL_TERMS = re.compile(r"tutorial|guide|how|what|why|best|tips", re.IGNORECASE)
_SPECIFIC_TERMS = re.compile(r"timestamp|episode|chapter|minute|second", re.IGNORECASE)


@dataclass(frozen=True)
class TextQuality:
    length: int
    word_count: int
    unique_word_ratio: float
    structural_score: float
    overall: float

    def as_dict(self) -> dict[str, float]:
        return {
            "length": self.length,
            "word_count": self.word_count,
            "unique_word_ratio": self.unique_word_ratio,
            "structural_score": self.structural_score,
            "overall": self.overall,
        }


class TextQualityScorer:
    """Cheap lexical quality estimate for a comment."""

    def __init__(self, policy: ScoringPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def score(self, text: str) -> TextQuality:
        length = len(text)
        word_count = len(words(text))
        ratio = unique_word_ratio(text)
        structural = self.structural_score(text)
        p = self.policy
        overall = (
            min(length, p.quality_length_cap) / p.quality_length_cap * p.quality_length_weight
            + min(word_count, p.quality_word_cap) / p.quality_word_cap * p.quality_word_weight
            + ratio * p.quality_unique_weight
            + structural * p.quality_structure_weight
        )
        return TextQuality(
            length=length,
            word_count=word_count,
            unique_word_ratio=ratio,
            structural_score=structural,
            overall=overall,
        )

    @staticmethod
    def structural_score(text: str) -> float:
        indicators = (
            "?" in text,
            bool(_DIGIT.search(text)),
            bool(_URL.search(text)),
            bool(TECHNICAL_TERMS.search(text)),
            _has_clause_structure(text),
        )
        return sum(1 for flag in indicators if flag) / len(indicators)


def _has_clause_structure(text: str) -> bool:
    parts = sentences(text)
    return len(parts) > 1 and any(len(words(part)) > 5 for part in parts)


class ImportanceScorer:
    """Accumulate context and content weights into a 0..1 importance."""

    def __init__(
        self,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        search_relevance: Callable[[str], float] | None = None,
    ) -> None:
        self.policy = policy
        self._search_relevance = search_relevance

    def score(self, text: str, context: SourceContext) -> float:
        p = self.policy
        importance = 0.0
        if context.is_business_opportunity:
            importance += p.business_weight
        if context.is_question:
            importance += p.question_weight
        if context.likes > p.high_engagement_likes or context.replies > p.high_engagement_replies:
            importance += p.high_engagement_weight
        if context.is_controversial:
            importance += p.controversial_weight
        if context.is_verified:
            importance += p.verified_weight
        if context.is_search:
            importance += p.search_query_weight

        for name in self.matched_families(text):
            importance += p.content_family_weights.get(name, 0.0)

        if self._search_relevance is not None:
            importance += self._search_relevance(text) * p.search_relevance_weight

        return max(0.0, min(1.0, importance))

    @staticmethod
    def matched_families(text: str) -> list[str]:
        return [name for name, pattern in CONTENT_FAMILIES if pattern.search(text)]


@dataclass(frozen=True)
class CostBenefit:
    ratio: float
    benefits: dict[str, float] = field(default_factory=dict)
    costs: dict[str, float] = field(default_factory=dict)
    recommendation: str = "skip"

    def as_dict(self) -> dict[str, object]:
        return {
            "ratio": self.ratio,
            "benefits": dict(self.benefits),
            "costs": dict(self.costs),
            "recommendation": self.recommendation,
        }


def estimate_tokens(text: str, chars_per_token: int = DEFAULT_POLICY.chars_per_token) -> int:
    return math.ceil(len(text) / chars_per_token)


def generality(text: str, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    """How broadly reusable a comment looks: general phrasing vs specifics."""
    has_general = bool(_GENERAL_TERMS.search(text))
    has_specific = bool(_SPECIFIC_TERMS.search(text))
    if has_general and not has_specific:
        return policy.generality_general
    if has_specific and not has_general:
        return policy.generality_specific
    return policy.generality_mixed


class CostBenefitEstimator:
    """Advisory cost/benefit ratio for embedding a text."""

    def __init__(
        self,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        cache: EmbeddingCacheStore | None = None,
    ) -> None:
        self.policy = policy
        self.cache = cache

    def estimate(self, text: str, context: SourceContext, importance: float) -> CostBenefit:
        p = self.policy
        tokens = estimate_tokens(text, p.chars_per_token)
        api_cost = tokens * p.price_per_1k_tokens / 1000
        time_cost = p.latency_cost_seconds
        total_cost = api_cost + time_cost / p.latency_normaliser

        benefits = {
            "search_improvement": importance * p.search_benefit_weight,
            "user_satisfaction": min(
                1.0,
                context.likes / p.satisfaction_likes_scale
                + context.replies / p.satisfaction_replies_scale,
            ),
            "learning_value": self._learning_value(text, context),
            "reusability": min(
                1.0, generality(text, p) + context.likes / p.reusability_likes_scale
            ),
        }
        total_benefit = sum(benefits.values())
        return CostBenefit(
            ratio=total_benefit / max(p.min_cost, total_cost),
            benefits=benefits,
            costs={"api": api_cost, "time": time_cost, "tokens": float(tokens)},
            recommendation=(
                "embed" if total_benefit > total_cost * p.embed_benefit_multiple else "skip"
            ),
        )

    def _learning_value(self, text: str, context: SourceContext) -> float:
        similarity = self.policy.baseline_existing_similarity
        if self.cache is not None and self.cache.get(self.cache.fingerprint(text)) is not None:
            similarity = 1.0
        uniqueness = 1.0 - similarity
        richness = context.populated_fields() / self.policy.context_richness_fields
        return (uniqueness + richness) / 2
