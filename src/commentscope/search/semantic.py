"""
Vector-based semantic search over a collection.

Embeds a query through the decision gate and searches collection vectors by
cosine similarity. A query the gate declines yields no vector and therefore
no semantic hits.
"""

from __future__ import annotations

import logging

from ..collection import VectorCollection
from ..decision import EmbeddingDecisionEngine
from ..models import VectorEntry

logger = logging.getLogger(__name__)


class SemanticSearchEngine:
    """Embed a query and search stored comment vectors."""

    def __init__(self, decision_engine: EmbeddingDecisionEngine) -> None:
        self.decision_engine = decision_engine

    def query_vector(self, query: str) -> tuple[float, ...] | None:
        result = self.decision_engine.embed_query(query)
        if not result.vectorized:
            logger.debug("Query %r not embedded: %s", query, result.reason)
            return None
        return result.vector

    def search(
        self,
        collection: VectorCollection,
        *,
        query: str,
        threshold: float,
        limit: int,
    ) -> list[tuple[VectorEntry, float]]:
        """Return (entry, similarity) pairs above *threshold*, best first."""
        vector = self.query_vector(query)
        if vector is None:
            return []
        return collection.knn(vector, threshold=threshold, limit=limit)
