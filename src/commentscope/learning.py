"""
Learning state and the periodic adaptation loop.

``LearningStore`` holds everything the engine learns at runtime: the decision
log, search patterns, per-strategy performance, the adaptive importance
threshold and the strategy weights. It is injected into the components that
read it and persisted explicitly with ``persist``/``load``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable

from .models import Decision
from .policy import DEFAULT_POLICY, ScoringPolicy
from .storage import RECOVERABLE_STORAGE_ERRORS, KeyValueStore

logger = logging.getLogger(__name__)

LEARNING_STATE_KEY = "learning:state"


@dataclass
class DecisionRecord:
    fingerprint: str | None
    should_embed: bool
    action: str
    reason: str
    score: float | None
    timestamp: float
    useful: bool | None = None


@dataclass
class SearchPattern:
    count: int
    type: str
    timestamp: float


@dataclass
class SearchRecord:
    query: str
    intent: str
    timestamp: float
    result_count: int
    avg_confidence: float
    top_score: float


@dataclass
class StrategyStats:
    uses: int = 0
    successes: int = 0
    avg_score: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.uses if self.uses else 0.5


class LearningStore:
    """Lock-protected runtime learning state."""

    def __init__(
        self,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.RLock()
        self._decisions: deque[DecisionRecord] = deque(maxlen=policy.decision_log_size)
        self._searches: deque[SearchRecord] = deque(maxlen=policy.decision_log_size)
        self._search_patterns: dict[str, SearchPattern] = {}
        self._strategy_stats: dict[str, StrategyStats] = {}
        self._importance_threshold = policy.importance_threshold
        self._strategy_weights = dict(policy.base_strategy_weights)

    # ------------------------------------------------------------------
    # Adaptive values read on the request path
    # ------------------------------------------------------------------

    @property
    def importance_threshold(self) -> float:
        with self._lock:
            return self._importance_threshold

    def set_importance_threshold(self, value: float) -> None:
        with self._lock:
            self._importance_threshold = value

    def strategy_weights(self) -> dict[str, float]:
        with self._lock:
            return dict(self._strategy_weights)

    def set_strategy_weights(self, weights: dict[str, float]) -> None:
        with self._lock:
            self._strategy_weights = dict(weights)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_decision(self, decision: Decision) -> None:
        record = DecisionRecord(
            fingerprint=decision.fingerprint,
            should_embed=decision.should_embed,
            action=decision.action,
            reason=decision.reason,
            score=decision.score,
            timestamp=decision.decided_at or self._clock(),
        )
        with self._lock:
            self._decisions.append(record)

    def record_embedding_usage(self, fingerprint: str, useful: bool) -> bool:
        """Mark the latest decision for *fingerprint* as useful or not."""
        with self._lock:
            for record in reversed(self._decisions):
                if record.fingerprint == fingerprint:
                    record.useful = useful
                    return True
        return False

    def record_search(self, query: str, intent: str = "general") -> None:
        now = self._clock()
        with self._lock:
            pattern = self._search_patterns.get(query)
            if pattern is None:
                pattern = SearchPattern(count=0, type=intent, timestamp=now)
                self._search_patterns[query] = pattern
            pattern.count += 1
            pattern.timestamp = now

    def record_search_performance(
        self,
        *,
        query: str,
        intent: str,
        strategies: list[str],
        confidences: list[float],
        top_score: float,
    ) -> None:
        avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0
        success = avg_confidence > self.policy.strategy_success_confidence
        with self._lock:
            self._searches.append(
                SearchRecord(
                    query=query,
                    intent=intent,
                    timestamp=self._clock(),
                    result_count=len(confidences),
                    avg_confidence=avg_confidence,
                    top_score=top_score,
                )
            )
            for strategy in set(strategies):
                for key in (strategy, f"{strategy}:{intent}"):
                    stats = self._strategy_stats.setdefault(key, StrategyStats())
                    stats.uses += 1
                    if success:
                        stats.successes += 1
                    stats.avg_score = (
                        stats.avg_score * (stats.uses - 1) + top_score
                    ) / stats.uses

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search_relevance(self, text: str) -> float:
        """How closely *text* resembles past queries, weighted by query count."""
        text_words = set(text.lower().split())
        if not text_words:
            return 0.0
        relevance = 0.0
        with self._lock:
            patterns = list(self._search_patterns.items())
        for query, pattern in patterns:
            query_words = set(query.lower().split())
            overlap = len(text_words & query_words)
            similarity = overlap / max(len(text_words), len(query_words))
            if similarity > 0.5:
                relevance += pattern.count * similarity
        return min(1.0, relevance / 10)

    def strategy_success_rate(self, strategy: str, intent: str | None = None) -> float:
        key = strategy if intent is None else f"{strategy}:{intent}"
        with self._lock:
            stats = self._strategy_stats.get(key)
            return stats.success_rate if stats is not None else 0.5

    def strategy_stats(self) -> dict[str, StrategyStats]:
        with self._lock:
            return {
                key: StrategyStats(stats.uses, stats.successes, stats.avg_score)
                for key, stats in self._strategy_stats.items()
            }

    def recent_decisions(self, window: float) -> list[DecisionRecord]:
        cutoff = self._clock() - window
        with self._lock:
            return [record for record in self._decisions if record.timestamp >= cutoff]

    def recent_searches(self, window: float) -> list[SearchRecord]:
        cutoff = self._clock() - window
        with self._lock:
            return [record for record in self._searches if record.timestamp >= cutoff]

    def prune(self, retention: float | None = None) -> int:
        """Drop decisions, searches and patterns older than *retention* seconds."""
        retention = self.policy.learning_retention if retention is None else retention
        cutoff = self._clock() - retention
        with self._lock:
            before = len(self._decisions) + len(self._searches) + len(self._search_patterns)
            self._decisions = deque(
                (r for r in self._decisions if r.timestamp >= cutoff),
                maxlen=self.policy.decision_log_size,
            )
            self._searches = deque(
                (r for r in self._searches if r.timestamp >= cutoff),
                maxlen=self.policy.decision_log_size,
            )
            self._search_patterns = {
                query: pattern
                for query, pattern in self._search_patterns.items()
                if pattern.timestamp >= cutoff
            }
            after = len(self._decisions) + len(self._searches) + len(self._search_patterns)
        return before - after

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "importance_threshold": self._importance_threshold,
                "strategy_weights": dict(self._strategy_weights),
                "decisions": len(self._decisions),
                "searches": len(self._searches),
                "search_patterns": len(self._search_patterns),
            }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "importance_threshold": self._importance_threshold,
                "strategy_weights": dict(self._strategy_weights),
                "decisions": [asdict(r) for r in self._decisions],
                "searches": [asdict(r) for r in self._searches],
                "search_patterns": {q: asdict(p) for q, p in self._search_patterns.items()},
                "strategy_stats": {
                    key: {"uses": s.uses, "successes": s.successes, "avg_score": s.avg_score}
                    for key, s in self._strategy_stats.items()
                },
            }

    def restore(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._importance_threshold = float(
                data.get("importance_threshold", self.policy.importance_threshold)
            )
            weights = data.get("strategy_weights")
            if isinstance(weights, dict) and weights:
                self._strategy_weights = {str(k): float(v) for k, v in weights.items()}
            self._decisions = deque(
                (DecisionRecord(**raw) for raw in data.get("decisions", [])),
                maxlen=self.policy.decision_log_size,
            )
            self._searches = deque(
                (SearchRecord(**raw) for raw in data.get("searches", [])),
                maxlen=self.policy.decision_log_size,
            )
            self._search_patterns = {
                str(q): SearchPattern(**raw)
                for q, raw in data.get("search_patterns", {}).items()
            }
            self._strategy_stats = {
                str(key): StrategyStats(**raw)
                for key, raw in data.get("strategy_stats", {}).items()
            }

    def persist(self, store: KeyValueStore) -> bool:
        payload = json.dumps(self.to_dict()).encode("utf-8")
        try:
            store.set(LEARNING_STATE_KEY, payload)
        except RECOVERABLE_STORAGE_ERRORS as exc:
            logger.warning("Could not persist learning state (%d bytes): %s", len(payload), exc)
            return False
        return True

    def load(self, store: KeyValueStore) -> bool:
        raw = store.get(LEARNING_STATE_KEY)
        if raw is None:
            return False
        try:
            self.restore(json.loads(raw.decode("utf-8")))
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable learning state: %s", exc)
            return False
        return True


@dataclass(frozen=True)
class AdaptationReport:
    pruned: int
    decision_success_rate: float | None
    importance_threshold: float
    strategy_weights: dict[str, float]
    persisted: bool

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class AdaptiveLearningLoop:
    """Periodically retune the importance threshold and strategy weights."""

    def __init__(
        self,
        learning: LearningStore,
        *,
        store: KeyValueStore | None = None,
        policy: ScoringPolicy | None = None,
    ) -> None:
        self.learning = learning
        self.store = store
        self.policy = policy or learning.policy
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> AdaptationReport:
        pruned = self.learning.prune(self.policy.learning_retention)
        success_rate = self._adapt_threshold()
        self._adapt_strategy_weights()
        persisted = self.learning.persist(self.store) if self.store is not None else False
        return AdaptationReport(
            pruned=pruned,
            decision_success_rate=success_rate,
            importance_threshold=self.learning.importance_threshold,
            strategy_weights=self.learning.strategy_weights(),
            persisted=persisted,
        )

    def _adapt_threshold(self) -> float | None:
        p = self.policy
        decisions = self.learning.recent_decisions(p.decision_window)
        if len(decisions) < p.min_decisions_for_adaptation:
            return None

        useful = sum(1 for d in decisions if d.should_embed and d.useful)
        success_rate = useful / len(decisions)
        threshold = self.learning.importance_threshold
        if success_rate < p.low_success_rate:
            threshold = min(p.threshold_max, threshold + p.threshold_step)
        elif success_rate > p.high_success_rate:
            threshold = max(p.threshold_min, threshold - p.threshold_step)
        self.learning.set_importance_threshold(round(threshold, 6))
        logger.info(
            "Importance threshold now %.2f (success rate %.2f over %d decisions)",
            threshold,
            success_rate,
            len(decisions),
        )
        return success_rate

    def _adapt_strategy_weights(self) -> None:
        p = self.policy
        if len(self.learning.recent_searches(p.search_window)) < p.min_searches_for_adaptation:
            return

        weights = self.learning.strategy_weights()
        stats = self.learning.strategy_stats()
        for strategy in list(weights):
            strategy_stats = stats.get(strategy)
            if strategy_stats is None or strategy_stats.uses == 0:
                continue
            rate = strategy_stats.success_rate
            if rate > p.strategy_boost_rate:
                weights[strategy] = min(
                    p.strategy_weight_max, weights[strategy] * p.strategy_boost_factor
                )
            elif rate < p.strategy_penalty_rate:
                weights[strategy] = max(
                    p.strategy_weight_min, weights[strategy] * p.strategy_penalty_factor
                )

        total = sum(weights.values())
        if total > 0:
            weights = {name: weight / total for name, weight in weights.items()}
        self.learning.set_strategy_weights(weights)
        logger.info("Adapted strategy weights: %s", weights)

    def start(self, interval: float | None = None) -> None:
        """Run ``run_once`` on a daemon thread every *interval* seconds."""
        if self._thread is not None and self._thread.is_alive():
            return
        period = self.policy.adaptation_interval_seconds if interval is None else interval
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(period,),
            name="commentscope-adaptation",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, period: float) -> None:
        while not self._stop.wait(period):
            try:
                self.run_once()
            except Exception:
                logger.exception("Adaptation pass failed")
