"""
Embedding decision engine.

Each request moves through factor collection (cache, quota, text quality,
importance, cost/benefit) to one of three outcomes: skip, reuse the cached
vector, or compute a new one. Computed vectors come from the configured
provider, falling back to the local deterministic provider when the call
fails or times out.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from functools import partial
from typing import Callable

from .cache import EmbeddingCacheStore, assess_vector_quality
from .embeddings import (
    DOCUMENT_TASK,
    QUERY_TASK,
    EmbeddingProvider,
    LocalDeterministicProvider,
)
from .learning import LearningStore
from .models import Decision, EmbeddingRecord, SourceContext, TextUnit, VectorizeResult
from .policy import DEFAULT_POLICY, ScoringPolicy
from .quota import QuotaTracker
from .scoring import (
    CostBenefitEstimator,
    ImportanceScorer,
    TextQualityScorer,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER_ID = "local_fallback"

Recorder = Callable[[list[list[float]], str], None]


@dataclass(frozen=True)
class BatchReport:
    """Per-unit outcomes of ``process_batch`` plus the tier each compute landed in."""

    results: dict[str, VectorizeResult]
    tiers: dict[str, list[str]] = field(default_factory=dict)
    deferred: list[str] = field(default_factory=list)


class EmbeddingDecisionEngine:
    """Decide whether a text is worth embedding, and embed it when it is."""

    def __init__(
        self,
        *,
        cache: EmbeddingCacheStore,
        quota: QuotaTracker,
        provider: EmbeddingProvider,
        learning: LearningStore,
        policy: ScoringPolicy = DEFAULT_POLICY,
        fallback: EmbeddingProvider | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.quota = quota
        self.provider = provider
        self.learning = learning
        self.policy = policy
        self.fallback = fallback or LocalDeterministicProvider(
            dim=provider.dim, provider_id=FALLBACK_PROVIDER_ID
        )
        self._clock = clock
        self._sleep = sleep
        self.quality_scorer = TextQualityScorer(policy)
        self.importance_scorer = ImportanceScorer(
            policy, search_relevance=learning.search_relevance
        )
        self.cost_benefit = CostBenefitEstimator(policy, cache=cache)
        self._executor = ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="commentscope-embed"
        )

    def close(self, wait: bool = False) -> None:
        """Stop accepting embedding calls; *wait* blocks until in-flight ones finish."""
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(self, text: str | None, context: SourceContext | None = None) -> Decision:
        context = context or SourceContext()
        decision = self._decide(text, context)
        self.learning.record_decision(decision)
        if decision.action == "skip":
            logger.debug(
                "Skipping %s (%s): %s", decision.fingerprint, decision.reason, decision.factors
            )
        return decision

    def _decide(self, text: str | None, context: SourceContext) -> Decision:
        p = self.policy
        now = self._clock()
        if not isinstance(text, str) or not text.strip():
            return Decision(
                should_embed=False,
                action="skip",
                confidence=1.0,
                reason="invalid_input",
                score=None,
                fingerprint=None,
                decided_at=now,
            )

        fp = self.cache.fingerprint(text)
        status = self.cache.status(fp)
        cache_factor = {
            "exists": status.exists,
            "is_valid": status.is_valid,
            "should_refresh": status.should_refresh,
            "age": status.age,
            "quality": status.quality,
        }
        if status.is_valid and not status.should_refresh:
            return Decision(
                should_embed=False,
                action="reuse_cache",
                confidence=p.reuse_confidence,
                reason="valid_cache",
                score=None,
                fingerprint=fp,
                factors={"cache": cache_factor},
                decided_at=now,
            )

        availability = self.quota.available()
        if availability.minute < p.rate_limit_fraction:
            logger.warning(
                "Rate limit reached for %s: minute quota %.3f remaining",
                fp,
                availability.minute,
            )
            return Decision(
                should_embed=False,
                action="skip",
                confidence=p.rate_limit_confidence,
                reason="rate_limit",
                score=None,
                fingerprint=fp,
                factors={"cache": cache_factor, "quota": availability.as_dict()},
                decided_at=now,
            )

        if len(text) < p.min_text_length:
            return Decision(
                should_embed=False,
                action="skip",
                confidence=p.too_short_confidence,
                reason="too_short",
                score=None,
                fingerprint=fp,
                factors={"length": len(text)},
                decided_at=now,
            )

        quality = self.quality_scorer.score(text)
        importance = self.importance_scorer.score(text, context)
        cost_benefit = self.cost_benefit.estimate(text, context, importance)
        has_valid_cache = status.exists and status.is_valid

        score = (
            quality.overall * p.weight_text_quality
            + importance * p.weight_importance
            + availability.overall * p.weight_quota
            + (0.0 if has_valid_cache else 1.0) * p.weight_cache
            + min(cost_benefit.ratio / p.cost_benefit_ratio_cap, 1.0) * p.weight_cost_benefit
        )
        threshold = self.learning.importance_threshold
        factors = {
            "text_quality": quality.as_dict(),
            "importance": importance,
            "quota": availability.as_dict(),
            "cache": cache_factor,
            "cost_benefit": cost_benefit.as_dict(),
            "threshold": threshold,
        }

        if score >= threshold:
            return Decision(
                should_embed=True,
                action="compute",
                confidence=score,
                reason="high_value" if score > p.high_value_score else "moderate_value",
                score=score,
                fingerprint=fp,
                factors=factors,
                decided_at=now,
            )

        if quality.overall < p.low_quality_score:
            reason = "low_quality"
        elif importance < p.low_importance_score:
            reason = "low_importance"
        else:
            reason = "marginal_value"
        return Decision(
            should_embed=False,
            action="skip",
            confidence=1.0 - score,
            reason=reason,
            score=score,
            fingerprint=fp,
            factors=factors,
            decided_at=now,
        )

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def record_embedding(
        self,
        text: str,
        vector: list[float] | tuple[float, ...],
        provider_id: str,
    ) -> EmbeddingRecord:
        """Cache a computed vector and charge its tokens to the quota."""
        values = tuple(float(v) for v in vector)
        record = EmbeddingRecord(
            fingerprint=self.cache.fingerprint(text),
            vector=values,
            dimension=len(values),
            created_at=self._clock(),
            quality=assess_vector_quality(values, provider_id, self.policy),
            provider_id=provider_id,
        )
        if not self.cache.put(record):
            logger.warning("Embedding for %s computed but not cached", record.fingerprint)
        self.quota.consume(estimate_tokens(text, self.policy.chars_per_token))
        return record

    def vectorize(
        self,
        text: str | None,
        context: SourceContext | None = None,
        *,
        task_type: str = DOCUMENT_TASK,
    ) -> VectorizeResult:
        decision = self.decide(text, context)
        if decision.action == "reuse_cache":
            return self._reuse(decision)
        if decision.action == "skip" or text is None:
            return VectorizeResult(vectorized=False, reason=decision.reason, decision=decision)

        embedded = self._embed_texts(
            [text], task_type=task_type, record=self._recorder([text])
        )
        if embedded is None:
            logger.error(
                "All embedding methods failed for %s (%s)", decision.fingerprint, decision.reason
            )
            return VectorizeResult(
                vectorized=False,
                reason="all_methods_failed",
                decision=decision,
                error="primary and fallback providers failed",
            )
        vectors, provider_id = embedded
        return VectorizeResult(
            vectorized=True,
            reason=decision.reason,
            decision=decision,
            vector=tuple(float(v) for v in vectors[0]),
            source=provider_id,
        )

    def embed_examples(self, texts: list[str]) -> list[list[float]] | None:
        """Embed pattern example texts under the same timeout, fallback and quota.

        The vectors are not cached; their estimated tokens are charged to the
        quota for every provider call that returns, including a late one.
        """
        tokens = sum(estimate_tokens(text, self.policy.chars_per_token) for text in texts)

        def charge(vectors: list[list[float]], provider_id: str) -> None:
            self.quota.consume(tokens)

        embedded = self._embed_texts(list(texts), record=charge)
        return None if embedded is None else embedded[0]

    def embed_query(self, query: str) -> VectorizeResult:
        """Gate and embed a search query the same way as a comment."""
        return self.vectorize(query, SourceContext(is_search=True), task_type=QUERY_TASK)

    def process_batch(self, units: list[TextUnit]) -> BatchReport:
        """Decide every unit, then embed computes tier by tier."""
        p = self.policy
        results: dict[str, VectorizeResult] = {}
        tiers: dict[str, list[tuple[TextUnit, Decision]]] = {
            "high": [],
            "medium": [],
            "low": [],
        }

        for unit in units:
            decision = self.decide(unit.text, unit.context)
            if decision.action == "reuse_cache":
                results[unit.id] = self._reuse(decision)
            elif decision.action == "skip":
                results[unit.id] = VectorizeResult(
                    vectorized=False, reason=decision.reason, decision=decision
                )
            else:
                score = decision.score or 0.0
                if score > p.high_value_score:
                    tiers["high"].append((unit, decision))
                elif score > p.medium_tier_score:
                    tiers["medium"].append((unit, decision))
                else:
                    tiers["low"].append((unit, decision))

        deferred: list[str] = []
        if tiers["high"]:
            results.update(self._embed_tier(tiers["high"]))
        if tiers["medium"]:
            self._sleep(p.batch_throttle_seconds)
            results.update(self._embed_tier(tiers["medium"]))
        if tiers["low"]:
            hourly_ceiling = self.quota.limit("hour") * p.low_tier_hourly_ratio
            if self.quota.usage("hour") < hourly_ceiling:
                results.update(self._embed_tier(tiers["low"]))
            else:
                for unit, decision in tiers["low"]:
                    deferred.append(unit.id)
                    results[unit.id] = VectorizeResult(
                        vectorized=False, reason="deferred", decision=decision
                    )
                logger.info("Deferred %d low-priority texts: hourly quota above ceiling", len(deferred))

        return BatchReport(
            results=results,
            tiers={name: [unit.id for unit, _ in members] for name, members in tiers.items()},
            deferred=deferred,
        )

    def _embed_tier(
        self, members: list[tuple[TextUnit, Decision]]
    ) -> dict[str, VectorizeResult]:
        texts = [unit.text for unit, _ in members]
        embedded = self._embed_texts(texts, record=self._recorder(texts))
        results: dict[str, VectorizeResult] = {}
        if embedded is None:
            for unit, decision in members:
                results[unit.id] = VectorizeResult(
                    vectorized=False,
                    reason="all_methods_failed",
                    decision=decision,
                    error="primary and fallback providers failed",
                )
            return results

        vectors, provider_id = embedded
        for (unit, decision), vector in zip(members, vectors):
            results[unit.id] = VectorizeResult(
                vectorized=True,
                reason=decision.reason,
                decision=decision,
                vector=tuple(float(v) for v in vector),
                source=provider_id,
            )
        return results

    def _recorder(self, texts: list[str]) -> Recorder:
        def record(vectors: list[list[float]], provider_id: str) -> None:
            for text, vector in zip(texts, vectors):
                self.record_embedding(text, vector, provider_id)

        return record

    def _reuse(self, decision: Decision) -> VectorizeResult:
        record = self.cache.get(decision.fingerprint) if decision.fingerprint else None
        if record is None:
            return VectorizeResult(
                vectorized=False,
                reason="all_methods_failed",
                decision=decision,
                error="cache record disappeared",
            )
        return VectorizeResult(
            vectorized=True,
            reason=decision.reason,
            decision=decision,
            vector=record.vector,
            source=record.provider_id,
            cached=True,
        )

    def _embed_texts(
        self,
        texts: list[str],
        *,
        task_type: str = DOCUMENT_TASK,
        record: Recorder | None = None,
    ) -> tuple[list[list[float]], str] | None:
        """Embed with the primary provider, falling back locally on error or timeout.

        *record* receives whichever vectors are returned. When the primary call
        times out it keeps running, and *record* is called again with its
        vectors once it completes, after the fallback vectors were recorded.
        """
        future = self._executor.submit(
            self.provider.generate_batch_embeddings, texts, task_type=task_type
        )
        pending: Future[list[list[float]]] | None = None
        try:
            vectors = future.result(timeout=self.policy.embedding_timeout_seconds)
        except FutureTimeoutError:
            pending = future
            logger.warning(
                "Provider %s timed out after %.2fs for %d texts, using local fallback",
                self.provider.provider_id,
                self.policy.embedding_timeout_seconds,
                len(texts),
            )
        except Exception as exc:
            logger.warning(
                "Provider %s failed for %d texts, using local fallback: %r",
                self.provider.provider_id,
                len(texts),
                exc,
            )
        else:
            if record is not None:
                record(vectors, self.provider.provider_id)
            return vectors, self.provider.provider_id

        try:
            vectors = self.fallback.generate_batch_embeddings(texts, task_type=task_type)
        except Exception:
            logger.exception("Local fallback embedding failed for %d texts", len(texts))
            vectors = None
        if vectors is not None and record is not None:
            record(vectors, self.fallback.provider_id)
        if pending is not None and record is not None:
            pending.add_done_callback(partial(self._record_late, record=record))
        if vectors is None:
            return None
        return vectors, self.fallback.provider_id

    def _record_late(self, future: Future[list[list[float]]], *, record: Recorder) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning(
                "Timed-out call to %s later failed: %r", self.provider.provider_id, exc
            )
            return
        vectors = future.result()
        logger.info(
            "Caching %d late embeddings from %s", len(vectors), self.provider.provider_id
        )
        try:
            record(vectors, self.provider.provider_id)
        except Exception:
            logger.exception("Could not record late embeddings from %s", self.provider.provider_id)
