"""
Per-query context snapshot of a collection: activity periods and trends,
conversation threads, and community-level engagement statistics.

Snapshots are derived from the collection only and never stored.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from ..collection import VectorCollection
from ..models import VectorEntry
from ..policy import DEFAULT_POLICY, HOUR, ScoringPolicy
from ..text import STOP_WORDS, mentions


@dataclass(frozen=True)
class ActivityPeriod:
    start: float
    end: float
    entry_ids: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.entry_ids)


@dataclass(frozen=True)
class TemporalContext:
    periods: tuple[ActivityPeriod, ...] = ()
    sentiment_slope: float = 0.0
    engagement_slope: float = 0.0
    sentiment_trend: str | None = None
    engagement_trend: str | None = None

    def period_size(self, entry_id: str) -> int:
        for period in self.periods:
            if entry_id in period.entry_ids:
                return period.size
        return 0

    @property
    def largest_period(self) -> int:
        return max((period.size for period in self.periods), default=0)


@dataclass(frozen=True)
class ConversationThread:
    entry_ids: tuple[str, ...]
    topic: str
    is_discussion: bool


@dataclass(frozen=True)
class ConversationalContext:
    threads: tuple[ConversationThread, ...] = ()
    discussion_topics: tuple[str, ...] = ()

    def thread_for(self, entry_id: str) -> ConversationThread | None:
        for thread in self.threads:
            if entry_id in thread.entry_ids:
                return thread
        return None


@dataclass(frozen=True)
class SocialContext:
    community_type: str = "unknown"
    engagement_tier: str = "low"
    sentiment_distribution: dict[str, int] = field(default_factory=dict)
    author_influence: dict[str, float] = field(default_factory=dict)
    viral_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ContextSnapshot:
    temporal: TemporalContext
    conversational: ConversationalContext
    social: SocialContext

    def summary(self) -> dict[str, object]:
        return {
            "activity_periods": len(self.temporal.periods),
            "sentiment_trend": self.temporal.sentiment_trend,
            "engagement_trend": self.temporal.engagement_trend,
            "threads": len(self.conversational.threads),
            "discussion_topics": list(self.conversational.discussion_topics),
            "community_type": self.social.community_type,
            "engagement_tier": self.social.engagement_tier,
            "viral": sorted(self.social.viral_ids),
        }


def extract_topic(text: str, max_words: int = 3) -> str:
    """First few long, non-stop words of a comment."""
    picked = [
        word
        for word in text.lower().split()
        if len(word) > 4 and word not in STOP_WORDS
    ]
    return " ".join(picked[:max_words])


def linear_slope(xs: list[float], ys: list[float]) -> float:
    """Least-squares slope; 0 when x has no spread."""
    n = len(xs)
    if n < 2:
        return 0.0
    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    denominator = n * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    if denominator == 0:
        return 0.0
    return (n * float(np.sum(x * y)) - float(np.sum(x)) * float(np.sum(y))) / denominator


class ContextSnapshotBuilder:
    """Build a ContextSnapshot from the current state of a collection."""

    def __init__(self, policy: ScoringPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def build(self, collection: VectorCollection | Iterable[VectorEntry]) -> ContextSnapshot:
        entries = (
            collection.entries()
            if isinstance(collection, VectorCollection)
            else list(collection)
        )
        entries.sort(key=lambda e: (e.stored_at, e.id))
        return ContextSnapshot(
            temporal=self.temporal(entries),
            conversational=self.conversational(entries),
            social=self.social(entries),
        )

    def temporal(self, entries: list[VectorEntry]) -> TemporalContext:
        if not entries:
            return TemporalContext()
        p = self.policy

        periods: list[ActivityPeriod] = []
        current: list[VectorEntry] = [entries[0]]
        for entry in entries[1:]:
            if entry.stored_at - current[-1].stored_at > p.activity_gap_seconds:
                periods.append(_period(current))
                current = [entry]
            else:
                current.append(entry)
        periods.append(_period(current))

        sentiment_slope = engagement_slope = 0.0
        sentiment_trend = engagement_trend = None
        if len(entries) >= p.min_trend_points:
            # Slopes are per hour since the first entry.
            origin = entries[0].stored_at
            xs = [(e.stored_at - origin) / HOUR for e in entries]
            sentiment_slope = linear_slope(xs, [e.sentiment for e in entries])
            engagement_slope = linear_slope(xs, [float(e.engagement) for e in entries])
            if abs(sentiment_slope) > p.sentiment_slope_threshold:
                sentiment_trend = "improving" if sentiment_slope > 0 else "declining"
            if abs(engagement_slope) > p.engagement_slope_threshold:
                engagement_trend = "increasing" if engagement_slope > 0 else "decreasing"

        return TemporalContext(
            periods=tuple(periods),
            sentiment_slope=sentiment_slope,
            engagement_slope=engagement_slope,
            sentiment_trend=sentiment_trend,
            engagement_trend=engagement_trend,
        )

    def conversational(self, entries: list[VectorEntry]) -> ConversationalContext:
        if len(entries) < 2:
            return ConversationalContext()
        p = self.policy
        similarity = _similarity_matrix(entries)
        mentioned = [mentions(e.text) for e in entries]
        authors = [(e.author or "").lower() for e in entries]

        def related(i: int, j: int) -> bool:
            if authors[j] and authors[j] in mentioned[i]:
                return True
            if authors[i] and authors[i] in mentioned[j]:
                return True
            if similarity is not None and similarity[i, j] > p.thread_similarity:
                return True
            return abs(entries[i].stored_at - entries[j].stored_at) < p.thread_proximity_seconds

        assigned: set[int] = set()
        threads: list[ConversationThread] = []
        for seed in range(len(entries)):
            if seed in assigned:
                continue
            assigned.add(seed)
            members = [seed]
            for other in range(len(entries)):
                if other in assigned:
                    continue
                if related(seed, other):
                    members.append(other)
                    assigned.add(other)
            if len(members) > 1:
                thread_entries = [entries[i] for i in members]
                threads.append(
                    ConversationThread(
                        entry_ids=tuple(e.id for e in thread_entries),
                        topic=_thread_topic(thread_entries),
                        is_discussion=len(members) >= p.discussion_thread_size,
                    )
                )

        topics = tuple(
            dict.fromkeys(t.topic for t in threads if t.is_discussion and t.topic)
        )
        return ConversationalContext(threads=tuple(threads), discussion_topics=topics)

    def social(self, entries: list[VectorEntry]) -> SocialContext:
        if not entries:
            return SocialContext()
        p = self.policy
        count = len(entries)
        mean_likes = sum(e.likes for e in entries) / count
        mean_replies = sum(e.replies for e in entries) / count
        mean_sentiment = sum(e.sentiment for e in entries) / count
        mean_engagement = sum(e.engagement for e in entries) / count

        if mean_replies >= p.discussion_mean_replies:
            community = "discussion"
        elif mean_sentiment > p.community_sentiment_cutoff:
            community = "supportive"
        elif mean_sentiment < -p.community_sentiment_cutoff:
            community = "critical"
        else:
            community = "casual"

        if mean_likes >= p.high_engagement_tier:
            tier = "high"
        elif mean_likes >= p.medium_engagement_tier:
            tier = "medium"
        else:
            tier = "low"

        distribution = {"positive": 0, "neutral": 0, "negative": 0}
        for entry in entries:
            if entry.sentiment > p.neutral_sentiment_band:
                distribution["positive"] += 1
            elif entry.sentiment < -p.neutral_sentiment_band:
                distribution["negative"] += 1
            else:
                distribution["neutral"] += 1

        raw_influence: Counter[str] = Counter()
        for entry in entries:
            if entry.author:
                raw_influence[entry.author] += (
                    entry.likes + p.influence_reply_weight * entry.replies
                )
        top = max(raw_influence.values(), default=0)
        influence = {
            author: (score / top if top > 0 else 0.0)
            for author, score in raw_influence.items()
        }

        viral = frozenset(
            e.id
            for e in entries
            if e.engagement > 0 and e.engagement > p.viral_multiple * mean_engagement
        )
        return SocialContext(
            community_type=community,
            engagement_tier=tier,
            sentiment_distribution=distribution,
            author_influence=influence,
            viral_ids=viral,
        )


def _period(entries: list[VectorEntry]) -> ActivityPeriod:
    return ActivityPeriod(
        start=entries[0].stored_at,
        end=entries[-1].stored_at,
        entry_ids=tuple(e.id for e in entries),
    )


def _thread_topic(entries: list[VectorEntry]) -> str:
    counts: Counter[str] = Counter(
        word
        for entry in entries
        for word in entry.text.lower().split()
        if len(word) > 4 and word not in STOP_WORDS
    )
    return " ".join(word for word, _ in counts.most_common(3))


def _similarity_matrix(entries: list[VectorEntry]) -> np.ndarray | None:
    dims = {len(e.vector) for e in entries}
    if len(dims) != 1 or 0 in dims:
        return None
    matrix = np.asarray([e.vector for e in entries], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    unit = matrix / safe[:, None]
    return unit @ unit.T
