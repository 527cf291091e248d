"""Search helpers for comment collections."""

from .context import (
    ContextSnapshot,
    ContextSnapshotBuilder,
    ConversationalContext,
    SocialContext,
    TemporalContext,
)
from .intent import QueryIntent, classify_intent, expand_query
from .query import (
    OrchestratedSearch,
    SearchOptions,
    SearchStrategyOrchestrator,
    StrategyConfig,
    StrategyPlan,
)
from .ranker import RankingEngine, generate_snippet
from .semantic import SemanticSearchEngine

__all__ = [
    "ContextSnapshot",
    "ContextSnapshotBuilder",
    "ConversationalContext",
    "SocialContext",
    "TemporalContext",
    "QueryIntent",
    "classify_intent",
    "expand_query",
    "OrchestratedSearch",
    "SearchOptions",
    "SearchStrategyOrchestrator",
    "StrategyConfig",
    "StrategyPlan",
    "RankingEngine",
    "generate_snippet",
    "SemanticSearchEngine",
]
