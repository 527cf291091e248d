"""
commentscope - adaptive embedding cache and multi-strategy comment search.

This package decides which comments are worth embedding, caches the vectors
it computes, and searches comment collections with exact, semantic,
query-expanded and pattern strategies before ranking the merged results.

Example usage:
    >>> from commentscope import CommentSearchEngine, TextUnit, SourceContext
    >>> engine = CommentSearchEngine.from_config(db_path=":memory:", provider_name="local")
    >>> engine.vectorize(TextUnit(id="c1", text="The audio was broken, how do I fix it?"), "video-1")
    >>> engine.search("how do I fix the audio", "video-1").results
"""

from .models import (
    Candidate,
    Decision,
    EmbeddingRecord,
    RankedResult,
    ScoreBreakdown,
    SourceContext,
    TextUnit,
    VectorEntry,
    VectorizeResult,
)
from .policy import DEFAULT_POLICY, ScoringPolicy
from .service import CommentSearchEngine, SearchResponse

__all__ = [
    # Service
    "CommentSearchEngine",
    "SearchResponse",
    # Policy
    "DEFAULT_POLICY",
    "ScoringPolicy",
    # Models
    "Candidate",
    "Decision",
    "EmbeddingRecord",
    "RankedResult",
    "ScoreBreakdown",
    "SourceContext",
    "TextUnit",
    "VectorEntry",
    "VectorizeResult",
]
