"""
Service facade wiring the decision engine, collections, retrieval and
learning loop together.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .cache import EmbeddingCacheStore
from .collection import CollectionRepository, VectorCollection
from .config import resolve_db_path, resolve_store_max_bytes
from .decision import BatchReport, EmbeddingDecisionEngine
from .embeddings import EmbeddingProvider, create_embedding_provider
from .learning import AdaptationReport, AdaptiveLearningLoop, LearningStore
from .models import Decision, RankedResult, SourceContext, TextUnit, VectorizeResult
from .patterns import PatternLibrary
from .policy import DEFAULT_POLICY, ScoringPolicy
from .quota import QuotaTracker
from .search import (
    ContextSnapshotBuilder,
    QueryIntent,
    RankingEngine,
    SearchOptions,
    SearchStrategyOrchestrator,
    SemanticSearchEngine,
)
from .storage import DuckDBKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResponse:
    query: str
    intent: QueryIntent
    results: list[RankedResult]
    strategies_used: list[str]
    confidence: float
    failed_strategies: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "intent": self.intent.as_dict(),
            "strategies_used": list(self.strategies_used),
            "failed_strategies": list(self.failed_strategies),
            "confidence": self.confidence,
            "context": dict(self.context),
            "results": [result.to_dict() for result in self.results],
        }


class CommentSearchEngine:
    """Vectorize comments into collections and search them."""

    def __init__(
        self,
        *,
        store: KeyValueStore,
        provider: EmbeddingProvider,
        policy: ScoringPolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.provider = provider
        self.policy = policy
        self._clock = clock

        self.learning = LearningStore(policy, clock=clock)
        self.learning.load(store)
        self.quota = QuotaTracker(policy, clock=clock)
        self.cache = EmbeddingCacheStore(store, policy, clock=clock)
        self.decisions = EmbeddingDecisionEngine(
            cache=self.cache,
            quota=self.quota,
            provider=provider,
            learning=self.learning,
            policy=policy,
            clock=clock,
            sleep=sleep,
        )
        self.collections = CollectionRepository(store, policy, clock=clock)
        self.patterns = PatternLibrary(store, self.decisions.embed_examples, clock=clock)
        self.patterns.ensure_defaults()
        self.orchestrator = SearchStrategyOrchestrator(
            SemanticSearchEngine(self.decisions),
            self.patterns,
            self.learning,
            policy,
        )
        self.context_builder = ContextSnapshotBuilder(policy)
        self.ranker = RankingEngine(policy, clock=clock)
        self.adaptation = AdaptiveLearningLoop(self.learning, store=store, policy=policy)

    @classmethod
    def from_config(
        cls,
        *,
        db_path: str | None = None,
        provider_name: str | None = None,
        max_bytes: int | None = None,
        policy: ScoringPolicy = DEFAULT_POLICY,
    ) -> CommentSearchEngine:
        """Build an engine from explicit overrides and COMMENTSCOPE_* env vars."""
        provider = create_embedding_provider(provider_name)
        store = DuckDBKeyValueStore(
            resolve_db_path(db_path),
            max_bytes=resolve_store_max_bytes(max_bytes),
        )
        return cls(store=store, provider=provider, policy=policy)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def decide(self, text: str | None, context: SourceContext | None = None) -> Decision:
        return self.decisions.decide(text, context)

    def vectorize(
        self,
        unit: TextUnit,
        collection_id: str,
        *,
        persist: bool = True,
    ) -> VectorizeResult:
        """Gate, embed and insert one comment into a collection."""
        result = self.decisions.vectorize(unit.text, unit.context)
        if result.vectorized and result.vector is not None:
            collection = self.collections.get(collection_id)
            if self._insert(collection, unit, result.vector) and persist:
                self.collections.save(collection_id)
        return result

    def process_batch(self, units: list[TextUnit], collection_id: str) -> BatchReport:
        report = self.decisions.process_batch(units)
        collection = self.collections.get(collection_id)
        inserted = 0
        for unit in units:
            result = report.results.get(unit.id)
            if result is not None and result.vectorized and result.vector is not None:
                if self._insert(collection, unit, result.vector):
                    inserted += 1
        if inserted:
            self.collections.save(collection_id)
        logger.info(
            "Batch into %s: %d units, %d inserted, %d deferred",
            collection_id,
            len(units),
            inserted,
            len(report.deferred),
        )
        return report

    def _insert(
        self,
        collection: VectorCollection,
        unit: TextUnit,
        vector: tuple[float, ...],
    ) -> bool:
        entry = self.collections.make_entry(
            entry_id=unit.id,
            vector=vector,
            text=unit.text,
            author=unit.author,
            likes=unit.context.likes,
            replies=unit.context.replies,
            sentiment=unit.context.sentiment,
        )
        return collection.insert(entry)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        collection_id: str,
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        if not query or not query.strip():
            raise ValueError("Search query must not be empty.")
        options = options or SearchOptions()
        collection = self.collections.get(collection_id)
        orchestrated = self.orchestrator.search(
            query=query, collection=collection, options=options
        )
        snapshot = self.context_builder.build(collection)
        results = self.ranker.rank(
            orchestrated.candidates,
            query=query,
            intent=orchestrated.intent,
            snapshot=snapshot,
            max_results=options.max_results,
        )

        confidences = [result.confidence for result in results]
        contributing = sorted({s for r in results for s in r.candidate.strategies})
        self.learning.record_search(query, orchestrated.intent.type)
        self.learning.record_search_performance(
            query=query,
            intent=orchestrated.intent.type,
            strategies=contributing or orchestrated.strategies_used,
            confidences=confidences,
            top_score=results[0].final_score if results else 0.0,
        )
        for result in results:
            self.learning.record_embedding_usage(
                self.cache.fingerprint(result.candidate.entry.text), True
            )

        return SearchResponse(
            query=query,
            intent=orchestrated.intent,
            results=results,
            strategies_used=orchestrated.strategies_used,
            confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            failed_strategies=orchestrated.failed,
            context=snapshot.summary(),
        )

    # ------------------------------------------------------------------
    # Reporting and lifecycle
    # ------------------------------------------------------------------

    def collection_stats(self, collection_id: str) -> dict[str, Any]:
        collection = self.collections.get(collection_id)
        entries = collection.entries()
        return {
            "collection_id": collection_id,
            "size": len(entries),
            "max_size": collection.max_size,
            "authors": len({e.author for e in entries if e.author}),
            "oldest_stored_at": min((e.stored_at for e in entries), default=None),
            "newest_stored_at": max((e.stored_at for e in entries), default=None),
            "cached_embeddings": self.cache.size(),
            "store_bytes": self.store.bytes_in_use(),
            "quota": self.quota.available().as_dict(),
            "learning": self.learning.summary(),
        }

    def adapt(self) -> AdaptationReport:
        return self.adaptation.run_once()

    def start_adaptation(self, interval: float | None = None) -> None:
        self.adaptation.start(interval)

    def flush(self) -> None:
        self.collections.save_all()
        self.learning.persist(self.store)

    def close(self) -> None:
        self.adaptation.stop()
        self.flush()
        self.decisions.close()
        self.store.close()
