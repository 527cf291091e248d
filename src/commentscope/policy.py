"""
Tunable scoring policy.

Every weight, threshold and window used by the decision and ranking layers is
a named field here so callers and tests can override them with
``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


def _intent_weights() -> dict[str, dict[str, float]]:
    return {
        "business": {
            "relevance": 0.35,
            "quality": 0.15,
            "diversity": 0.1,
            "recency": 0.1,
            "engagement": 0.2,
            "context": 0.1,
        },
        "technical": {
            "relevance": 0.45,
            "quality": 0.2,
            "diversity": 0.1,
            "recency": 0.1,
            "engagement": 0.05,
            "context": 0.1,
        },
        "opinion": {
            "relevance": 0.25,
            "quality": 0.25,
            "diversity": 0.1,
            "recency": 0.05,
            "engagement": 0.1,
            "context": 0.25,
        },
        "factual": {
            "relevance": 0.45,
            "quality": 0.1,
            "diversity": 0.05,
            "recency": 0.25,
            "engagement": 0.05,
            "context": 0.1,
        },
        "comparison": {
            "relevance": 0.35,
            "quality": 0.2,
            "diversity": 0.2,
            "recency": 0.05,
            "engagement": 0.1,
            "context": 0.1,
        },
        "emotional": {
            "relevance": 0.3,
            "quality": 0.1,
            "diversity": 0.1,
            "recency": 0.1,
            "engagement": 0.2,
            "context": 0.2,
        },
        "unknown": {
            "relevance": 0.35,
            "quality": 0.15,
            "diversity": 0.1,
            "recency": 0.1,
            "engagement": 0.15,
            "context": 0.15,
        },
    }


def _strategy_table() -> dict[str, tuple[str, ...]]:
    return {
        "business": ("semantic", "pattern", "contextual"),
        "technical": ("exact", "semantic", "pattern"),
        "opinion": ("semantic", "contextual"),
        "factual": ("exact", "semantic"),
        "comparison": ("semantic", "contextual", "pattern"),
        "emotional": ("semantic", "contextual"),
        "unknown": ("semantic", "exact"),
    }


def _content_family_weights() -> dict[str, float]:
    return {
        "transactional": 0.3,
        "educational": 0.25,
        "problem_report": 0.2,
        "opinion": 0.15,
        "help_request": 0.2,
    }


def _provider_quality() -> dict[str, float]:
    return {
        "gemini": 0.95,
        "local": 0.8,
        "local_fallback": 0.6,
    }


@dataclass(frozen=True)
class ScoringPolicy:
    # Quota windows, in estimated tokens.
    quota_minute_limit: int = 3000
    quota_hour_limit: int = 50_000
    quota_day_limit: int = 1_000_000
    quota_day_weight: float = 0.5
    quota_hour_weight: float = 0.3
    quota_minute_weight: float = 0.2

    # Cache.
    fingerprint_prefix_chars: int = 100
    cache_max_age: float = 7 * DAY
    cache_quality_floor: float = 0.7
    cache_refresh_age_ratio: float = 0.7
    cache_refresh_quality: float = 0.9
    cache_prune_fraction: float = 0.1
    provider_quality: dict[str, float] = field(default_factory=_provider_quality)
    default_provider_quality: float = 0.5

    # Text quality.
    quality_length_cap: int = 500
    quality_word_cap: int = 50
    quality_length_weight: float = 0.2
    quality_word_weight: float = 0.2
    quality_unique_weight: float = 0.3
    quality_structure_weight: float = 0.3

    # Importance.
    business_weight: float = 0.3
    question_weight: float = 0.2
    high_engagement_weight: float = 0.2
    controversial_weight: float = 0.2
    verified_weight: float = 0.1
    search_query_weight: float = 0.2
    high_engagement_likes: int = 100
    high_engagement_replies: int = 5
    search_relevance_weight: float = 0.3
    content_family_weights: dict[str, float] = field(default_factory=_content_family_weights)

    # Cost/benefit.
    chars_per_token: int = 4
    price_per_1k_tokens: float = 0.0001
    latency_cost_seconds: float = 0.2
    latency_normaliser: float = 1000.0
    min_cost: float = 0.001
    embed_benefit_multiple: float = 2.0
    baseline_existing_similarity: float = 0.3
    cost_benefit_ratio_cap: float = 10.0
    search_benefit_weight: float = 0.5
    satisfaction_likes_scale: float = 100.0
    satisfaction_replies_scale: float = 10.0
    reusability_likes_scale: float = 1000.0
    context_richness_fields: int = 10
    generality_general: float = 0.8
    generality_specific: float = 0.2
    generality_mixed: float = 0.5

    # Decision.
    min_text_length: int = 20
    importance_threshold: float = 0.7
    rate_limit_fraction: float = 0.05
    weight_text_quality: float = 0.2
    weight_importance: float = 0.3
    weight_quota: float = 0.15
    weight_cache: float = 0.15
    weight_cost_benefit: float = 0.2
    high_value_score: float = 0.8
    medium_tier_score: float = 0.6
    low_quality_score: float = 0.3
    low_importance_score: float = 0.3
    reuse_confidence: float = 0.9
    rate_limit_confidence: float = 0.95
    too_short_confidence: float = 0.9
    batch_throttle_seconds: float = 0.1
    low_tier_hourly_ratio: float = 0.8
    embedding_timeout_seconds: float = 10.0

    # Vector collections and search.
    collection_max_size: int = 1000
    semantic_threshold: float = 0.75
    expansion_threshold_ratio: float = 0.9
    pattern_threshold: float = 0.7
    strategy_limit: int = 20
    expansion_limit: int = 10
    max_expansions: int = 3
    strategy_timeout_seconds: float = 15.0
    base_strategy_weights: dict[str, float] = field(
        default_factory=lambda: {
            "exact": 0.3,
            "semantic": 0.4,
            "contextual": 0.2,
            "pattern": 0.1,
        }
    )
    strategy_table: dict[str, tuple[str, ...]] = field(default_factory=_strategy_table)

    # Context snapshot.
    activity_gap_seconds: float = HOUR
    min_trend_points: int = 10
    sentiment_slope_threshold: float = 0.001
    engagement_slope_threshold: float = 0.1
    thread_similarity: float = 0.85
    thread_proximity_seconds: float = 300.0
    discussion_thread_size: int = 3
    viral_multiple: float = 3.0
    high_engagement_tier: float = 100.0
    medium_engagement_tier: float = 10.0
    discussion_mean_replies: float = 2.0
    community_sentiment_cutoff: float = 0.2
    neutral_sentiment_band: float = 0.1
    influence_reply_weight: float = 2.0

    # Ranking.
    recency_half_life: float = 7 * DAY
    context_component_cap: float = 0.3
    diversity_author_share: float = 0.5
    diversity_topic_share: float = 0.5
    engagement_likes_weight: float = 0.7
    engagement_replies_weight: float = 0.3
    engagement_likes_scale: float = 100.0
    engagement_replies_scale: float = 10.0
    confidence_relevance_weight: float = 0.6
    confidence_similarity_weight: float = 0.4
    relevance_similarity_weight: float = 0.4
    relevance_overlap_weight: float = 0.3
    relevance_alignment_weight: float = 0.3
    neutral_alignment: float = 0.5
    rank_length_cap: float = 200.0
    rank_length_weight: float = 0.3
    rank_unique_weight: float = 0.3
    rank_likes_weight: float = 0.2
    rank_sentiment_weight: float = 0.2
    author_diversity_window: int = 5
    topic_diversity_window: int = 10
    max_results: int = 20
    intent_weights: dict[str, dict[str, float]] = field(default_factory=_intent_weights)

    # Learning.
    decision_log_size: int = 1000
    learning_retention: float = 7 * DAY
    decision_window: float = DAY
    search_window: float = HOUR
    min_decisions_for_adaptation: int = 10
    min_searches_for_adaptation: int = 10
    threshold_step: float = 0.05
    threshold_min: float = 0.5
    threshold_max: float = 0.9
    low_success_rate: float = 0.7
    high_success_rate: float = 0.9
    strategy_success_confidence: float = 0.7
    strategy_boost_rate: float = 0.8
    strategy_penalty_rate: float = 0.4
    strategy_boost_factor: float = 1.1
    strategy_penalty_factor: float = 0.9
    strategy_weight_min: float = 0.1
    strategy_weight_max: float = 0.5
    adaptation_interval_seconds: float = HOUR


DEFAULT_POLICY = ScoringPolicy()
