"""
Ranking helpers for merged retrieval candidates.
"""

from __future__ import annotations

import re
import time
from collections import Counter
from typing import Callable

from ..models import Candidate, RankedResult, ScoreBreakdown
from ..policy import DEFAULT_POLICY, ScoringPolicy
from ..text import content_terms, unique_word_ratio
from .context import ContextSnapshot, extract_topic
from .intent import QueryIntent, intent_matches

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_SNIPPET_LIMIT = 150


def generate_snippet(text: str, query: str) -> str:
    """The sentence mentioning the most query words, trimmed to 150 chars."""
    terms = query.lower().split()
    parts = _SENTENCE_SPLIT.split(text)
    best = parts[0] if parts and parts[0].strip() else text
    best_hits = 0
    for part in parts:
        lowered = part.lower()
        hits = sum(1 for term in terms if term in lowered)
        if hits > best_hits:
            best_hits = hits
            best = part
    best = best.strip()
    if len(best) > _SNIPPET_LIMIT:
        return best[: _SNIPPET_LIMIT - 3] + "..."
    return best


def term_overlap(query: str, text: str) -> float:
    terms = content_terms(query)
    if not terms:
        return 0.0
    text_terms = set(content_terms(text))
    return sum(1 for term in terms if term in text_terms) / len(terms)


class RankingEngine:
    """Score candidates on six axes, blend by intent and pick a diverse top list."""

    def __init__(
        self,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock

    def rank(
        self,
        candidates: list[Candidate],
        *,
        query: str,
        intent: QueryIntent,
        snapshot: ContextSnapshot,
        max_results: int | None = None,
    ) -> list[RankedResult]:
        if not candidates:
            return []
        limit = max_results or self.policy.max_results
        weights = self.policy.intent_weights.get(
            intent.type, self.policy.intent_weights["unknown"]
        )

        topics = {c.entry.id: extract_topic(c.entry.text) for c in candidates}
        author_counts = Counter(c.entry.author for c in candidates if c.entry.author)
        topic_counts = Counter(topic for topic in topics.values() if topic)
        now = self._clock()

        scored: list[tuple[Candidate, ScoreBreakdown, float]] = []
        for candidate in candidates:
            entry = candidate.entry
            scores = ScoreBreakdown(
                relevance=self._relevance(candidate, query, intent),
                quality=self._quality(candidate),
                diversity=self._diversity(
                    author_counts.get(entry.author, 1) if entry.author else 1,
                    topic_counts.get(topics[entry.id], 1),
                ),
                recency=0.5 ** (max(0.0, now - entry.stored_at) / self.policy.recency_half_life),
                engagement=self._engagement(candidate),
                context=self._context(candidate, snapshot),
            )
            final = sum(weights[name] * value for name, value in scores.as_dict().items())
            scored.append((candidate, scores, final))

        scored.sort(
            key=lambda item: (-item[2], -item[0].similarity, -item[0].strategy_weight, item[0].entry.id)
        )

        selected: list[tuple[Candidate, ScoreBreakdown, float]] = []
        seen_authors: set[str] = set()
        seen_topics: set[str] = set()
        for candidate, scores, final in scored:
            if len(selected) >= limit:
                break
            author = candidate.entry.author
            topic = topics[candidate.entry.id]
            if (
                author
                and author in seen_authors
                and len(selected) < self.policy.author_diversity_window
            ):
                continue
            if (
                topic
                and topic in seen_topics
                and len(selected) < self.policy.topic_diversity_window
            ):
                continue
            selected.append((candidate, scores, final))
            if author:
                seen_authors.add(author)
            if topic:
                seen_topics.add(topic)

        return [
            RankedResult(
                candidate=candidate,
                scores=scores,
                final_score=final,
                rank=position,
                confidence=min(
                    1.0,
                    self.policy.confidence_relevance_weight * scores.relevance
                    + self.policy.confidence_similarity_weight * candidate.similarity,
                ),
                snippet=generate_snippet(candidate.entry.text, query),
                explanation=self._explain(candidate, scores, intent),
            )
            for position, (candidate, scores, final) in enumerate(selected, start=1)
        ]

    def _relevance(self, candidate: Candidate, query: str, intent: QueryIntent) -> float:
        p = self.policy
        aligned = intent_matches(intent.type, candidate.entry.text)
        alignment = p.neutral_alignment if aligned is None else (1.0 if aligned else 0.0)
        return (
            p.relevance_similarity_weight * candidate.similarity
            + p.relevance_overlap_weight * term_overlap(query, candidate.entry.text)
            + p.relevance_alignment_weight * alignment
        )

    def _quality(self, candidate: Candidate) -> float:
        p = self.policy
        entry = candidate.entry
        return (
            min(len(entry.text) / p.rank_length_cap, 1.0) * p.rank_length_weight
            + unique_word_ratio(entry.text) * p.rank_unique_weight
            + min(entry.likes / p.engagement_likes_scale, 1.0) * p.rank_likes_weight
            + min(abs(entry.sentiment), 1.0) * p.rank_sentiment_weight
        )

    def _diversity(self, author_count: int, topic_count: int) -> float:
        """Shares shrink as more candidates come from the same author or topic."""
        p = self.policy
        return p.diversity_author_share / max(1, author_count) + p.diversity_topic_share / max(
            1, topic_count
        )

    def _engagement(self, candidate: Candidate) -> float:
        p = self.policy
        entry = candidate.entry
        return p.engagement_likes_weight * min(
            entry.likes / p.engagement_likes_scale, 1.0
        ) + p.engagement_replies_weight * min(entry.replies / p.engagement_replies_scale, 1.0)

    def _context(self, candidate: Candidate, snapshot: ContextSnapshot) -> float:
        cap = self.policy.context_component_cap
        entry = candidate.entry

        temporal = 0.0
        largest = snapshot.temporal.largest_period
        if largest:
            temporal = cap * snapshot.temporal.period_size(entry.id) / largest

        conversational = 0.0
        thread = snapshot.conversational.thread_for(entry.id)
        if thread is not None:
            conversational = cap if thread.is_discussion else cap / 2

        social_signal = 0.0
        if entry.author:
            social_signal = snapshot.social.author_influence.get(entry.author, 0.0)
        if entry.id in snapshot.social.viral_ids:
            social_signal = 1.0
        social = cap * social_signal

        return temporal + conversational + social

    @staticmethod
    def _explain(candidate: Candidate, scores: ScoreBreakdown, intent: QueryIntent) -> str:
        reasons = [
            f"matched by {'+'.join(candidate.strategies)} "
            f"(similarity {candidate.similarity:.2f})"
        ]
        if candidate.expansions:
            reasons.append(f"via expansion {candidate.expansions[0]!r}")
        if candidate.patterns:
            reasons.append(f"fits {', '.join(candidate.patterns)} pattern")
        if scores.relevance > 0.7:
            reasons.append(f"strongly relevant to {intent.type} query")
        if scores.engagement > 0.5:
            reasons.append("high engagement")
        if scores.recency > 0.8:
            reasons.append("recent")
        if scores.context >= 0.3:
            reasons.append("active in discussion")
        return "; ".join(reasons)
