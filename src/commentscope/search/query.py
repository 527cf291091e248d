"""
Multi-strategy retrieval: classify the query, pick strategies, run them in
parallel and merge their hits per comment.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from ..collection import VectorCollection
from ..learning import LearningStore
from ..models import Candidate, VectorEntry
from ..patterns import PatternLibrary, detect_patterns
from ..policy import DEFAULT_POLICY, ScoringPolicy
from ..text import content_terms
from .intent import QueryIntent, classify_intent, expand_query
from .semantic import SemanticSearchEngine

logger = logging.getLogger(__name__)

STRATEGIES = ("exact", "semantic", "contextual", "pattern")


@dataclass(frozen=True)
class StrategyConfig:
    """Per-strategy overrides. ``None`` means use the policy default."""

    enabled: bool = True
    threshold: float | None = None
    limit: int | None = None


@dataclass(frozen=True)
class SearchOptions:
    strategies: tuple[str, ...] | None = None
    configs: dict[str, StrategyConfig] = field(default_factory=dict)
    timeout: float | None = None
    max_results: int | None = None


@dataclass(frozen=True)
class StrategyPlan:
    name: str
    weight: float
    threshold: float
    limit: int


@dataclass(frozen=True)
class StrategyHit:
    entry: VectorEntry
    similarity: float
    strategy: str
    expansion: str | None = None
    pattern: str | None = None


@dataclass(frozen=True)
class OrchestratedSearch:
    """Merged candidates plus how they were produced."""

    intent: QueryIntent
    plans: list[StrategyPlan]
    candidates: list[Candidate]
    failed: list[str] = field(default_factory=list)

    @property
    def strategies_used(self) -> list[str]:
        return [plan.name for plan in self.plans]


class SearchStrategyOrchestrator:
    """Parallel retrieval engine for exact, semantic, contextual and pattern paths."""

    def __init__(
        self,
        semantic: SemanticSearchEngine,
        patterns: PatternLibrary,
        learning: LearningStore,
        policy: ScoringPolicy = DEFAULT_POLICY,
    ) -> None:
        self.semantic = semantic
        self.patterns = patterns
        self.learning = learning
        self.policy = policy

    def search(
        self,
        *,
        query: str,
        collection: VectorCollection,
        options: SearchOptions | None = None,
    ) -> OrchestratedSearch:
        options = options or SearchOptions()
        intent = classify_intent(query)
        plans = self.select_strategies(intent, options)
        hits, failed = self._run_parallel(
            query=query,
            intent=intent,
            collection=collection,
            plans=plans,
            timeout=options.timeout or self.policy.strategy_timeout_seconds,
        )
        weights = {plan.name: plan.weight for plan in plans}
        return OrchestratedSearch(
            intent=intent,
            plans=plans,
            candidates=self._merge(hits, weights),
            failed=failed,
        )

    def select_strategies(
        self, intent: QueryIntent, options: SearchOptions | None = None
    ) -> list[StrategyPlan]:
        options = options or SearchOptions()
        table = self.policy.strategy_table
        names = options.strategies or table.get(intent.type) or table["unknown"]
        base_weights = self.learning.strategy_weights()

        plans: list[StrategyPlan] = []
        for name in names:
            if name not in STRATEGIES:
                raise ValueError(f"Unknown search strategy: {name!r}")
            config = options.configs.get(name, StrategyConfig())
            if not config.enabled:
                continue
            success_rate = self.learning.strategy_success_rate(name, intent.type)
            boost = 0.5 + 0.5 * success_rate
            plans.append(
                StrategyPlan(
                    name=name,
                    weight=base_weights.get(name, 0.0) * boost,
                    threshold=(
                        config.threshold
                        if config.threshold is not None
                        else self._default_threshold(name)
                    ),
                    limit=config.limit or self.policy.strategy_limit,
                )
            )
        return plans

    def _default_threshold(self, name: str) -> float:
        if name == "pattern":
            return self.policy.pattern_threshold
        if name == "exact":
            return 0.0
        return self.policy.semantic_threshold

    def _run_parallel(
        self,
        *,
        query: str,
        intent: QueryIntent,
        collection: VectorCollection,
        plans: list[StrategyPlan],
        timeout: float,
    ) -> tuple[list[StrategyHit], list[str]]:
        if not plans:
            return [], []
        runners: dict[str, Callable[..., list[StrategyHit]]] = {
            "exact": self._exact_query,
            "semantic": self._semantic_query,
            "contextual": self._contextual_query,
            "pattern": self._pattern_query,
        }
        hits: list[StrategyHit] = []
        failed: list[str] = []
        executor = ThreadPoolExecutor(
            max_workers=len(plans), thread_name_prefix="commentscope-search"
        )
        try:
            futures = {
                plan.name: executor.submit(
                    runners[plan.name],
                    query=query,
                    intent=intent,
                    collection=collection,
                    plan=plan,
                )
                for plan in plans
            }
            deadline = time.monotonic() + timeout
            for name, future in futures.items():
                try:
                    hits.extend(future.result(timeout=max(0.0, deadline - time.monotonic())))
                except Exception as exc:
                    future.cancel()
                    failed.append(name)
                    logger.warning("Search strategy %s failed for %r: %r", name, query, exc)
        finally:
            # Do not wait on strategies that timed out.
            executor.shutdown(wait=False)
        return hits, failed

    def _exact_query(
        self,
        *,
        query: str,
        intent: QueryIntent,
        collection: VectorCollection,
        plan: StrategyPlan,
    ) -> list[StrategyHit]:
        terms = content_terms(query)
        if not terms:
            return []
        hits: list[StrategyHit] = []
        for entry in collection.entries():
            entry_terms = set(content_terms(entry.text))
            overlap = sum(1 for term in terms if term in entry_terms)
            if overlap == 0:
                continue
            similarity = overlap / len(terms)
            if similarity >= plan.threshold:
                hits.append(StrategyHit(entry=entry, similarity=similarity, strategy="exact"))
        hits.sort(key=lambda hit: (-hit.similarity, hit.entry.id))
        return hits[: plan.limit]

    def _semantic_query(
        self,
        *,
        query: str,
        intent: QueryIntent,
        collection: VectorCollection,
        plan: StrategyPlan,
    ) -> list[StrategyHit]:
        return [
            StrategyHit(entry=entry, similarity=score, strategy="semantic")
            for entry, score in self.semantic.search(
                collection, query=query, threshold=plan.threshold, limit=plan.limit
            )
        ]

    def _contextual_query(
        self,
        *,
        query: str,
        intent: QueryIntent,
        collection: VectorCollection,
        plan: StrategyPlan,
    ) -> list[StrategyHit]:
        hits: list[StrategyHit] = []
        threshold = plan.threshold * self.policy.expansion_threshold_ratio
        limit = min(plan.limit, self.policy.expansion_limit)
        for expansion in expand_query(query, intent.type, self.policy.max_expansions):
            for entry, score in self.semantic.search(
                collection, query=expansion, threshold=threshold, limit=limit
            ):
                hits.append(
                    StrategyHit(
                        entry=entry,
                        similarity=score,
                        strategy="contextual",
                        expansion=expansion,
                    )
                )
        return hits

    def _pattern_query(
        self,
        *,
        query: str,
        intent: QueryIntent,
        collection: VectorCollection,
        plan: StrategyPlan,
    ) -> list[StrategyHit]:
        names = detect_patterns(query)
        if not names:
            return []
        hits: list[StrategyHit] = []
        for name in names:
            exemplar = self.patterns.get(name)
            if exemplar is None:
                continue
            for entry, score in collection.knn(
                exemplar.vector, threshold=plan.threshold, limit=plan.limit
            ):
                hits.append(
                    StrategyHit(entry=entry, similarity=score, strategy="pattern", pattern=name)
                )
        return hits

    @staticmethod
    def _merge(hits: list[StrategyHit], weights: dict[str, float]) -> list[Candidate]:
        merged: dict[str, dict[str, Any]] = {}
        for hit in hits:
            item = merged.setdefault(
                hit.entry.id,
                {
                    "entry": hit.entry,
                    "similarity": 0.0,
                    "strategies": [],
                    "expansions": [],
                    "patterns": [],
                },
            )
            item["similarity"] = max(float(item["similarity"]), hit.similarity)
            if hit.strategy not in item["strategies"]:
                item["strategies"].append(hit.strategy)
            if hit.expansion and hit.expansion not in item["expansions"]:
                item["expansions"].append(hit.expansion)
            if hit.pattern and hit.pattern not in item["patterns"]:
                item["patterns"].append(hit.pattern)

        candidates = [
            Candidate(
                entry=item["entry"],
                similarity=float(item["similarity"]),
                strategies=tuple(item["strategies"]),
                expansions=tuple(item["expansions"]),
                patterns=tuple(item["patterns"]),
                strategy_weight=sum(weights.get(name, 0.0) for name in item["strategies"]),
            )
            for item in merged.values()
        ]
        candidates.sort(key=lambda c: (-c.similarity, -c.strategy_weight, c.entry.id))
        return candidates
