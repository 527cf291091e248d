"""
Data records shared by the decision, storage and retrieval layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Literal, TypeAlias

DecisionAction: TypeAlias = Literal["skip", "reuse_cache", "compute"]
ReasonCode: TypeAlias = Literal[
    "invalid_input",
    "valid_cache",
    "rate_limit",
    "too_short",
    "low_quality",
    "low_importance",
    "marginal_value",
    "high_value",
    "moderate_value",
]
StrategyName: TypeAlias = Literal["exact", "semantic", "contextual", "pattern"]
QueryIntentType: TypeAlias = Literal[
    "business",
    "technical",
    "opinion",
    "factual",
    "comparison",
    "emotional",
    "unknown",
]


@dataclass(frozen=True)
class SourceContext:
    """Caller-supplied flags describing where a text span came from."""

    is_question: bool = False
    is_business_opportunity: bool = False
    likes: int = 0
    replies: int = 0
    is_controversial: bool = False
    is_verified: bool = False
    is_search: bool = False
    sentiment: float | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SourceContext:
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in raw.items() if key in known})

    def populated_fields(self) -> int:
        """Count context fields that carry information."""
        count = 0
        for f in fields(self):
            value = getattr(self, f.name)
            if value not in (None, False, 0):
                count += 1
        return count


@dataclass(frozen=True)
class TextUnit:
    """An immutable comment considered for embedding."""

    id: str
    text: str
    context: SourceContext = field(default_factory=SourceContext)
    author: str | None = None


@dataclass(frozen=True)
class EmbeddingRecord:
    """A cached embedding. Replaced wholesale on refresh."""

    fingerprint: str
    vector: tuple[float, ...]
    dimension: int
    created_at: float
    quality: float
    provider_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "vector": list(self.vector),
            "dimension": self.dimension,
            "created_at": self.created_at,
            "quality": self.quality,
            "provider_id": self.provider_id,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EmbeddingRecord:
        vector = tuple(float(v) for v in raw["vector"])
        return cls(
            fingerprint=str(raw["fingerprint"]),
            vector=vector,
            dimension=int(raw.get("dimension", len(vector))),
            created_at=float(raw["created_at"]),
            quality=float(raw["quality"]),
            provider_id=str(raw["provider_id"]),
        )


@dataclass(frozen=True)
class CacheEntryStatus:
    """Derived view of a cache record against the current clock and policy."""

    exists: bool
    age: float | None = None
    quality: float | None = None
    is_valid: bool = False
    should_refresh: bool = True


@dataclass(frozen=True)
class QuotaState:
    """Usage counter for one rolling window."""

    window_start: float
    used: int


@dataclass(frozen=True)
class Decision:
    """Outcome of one embedding decision, with the factors behind it."""

    should_embed: bool
    action: DecisionAction
    confidence: float
    reason: ReasonCode
    score: float | None
    fingerprint: str | None
    factors: dict[str, Any] = field(default_factory=dict)
    decided_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_embed": self.should_embed,
            "action": self.action,
            "confidence": self.confidence,
            "reason": self.reason,
            "score": self.score,
            "fingerprint": self.fingerprint,
            "factors": self.factors,
            "decided_at": self.decided_at,
        }


@dataclass(frozen=True)
class VectorizeResult:
    """Result of running a text through the decision gate and provider."""

    vectorized: bool
    reason: str
    decision: Decision | None = None
    vector: tuple[float, ...] | None = None
    source: str | None = None
    cached: bool = False
    error: str | None = None


@dataclass(frozen=True)
class VectorEntry:
    """A stored comment vector inside a collection."""

    id: str
    vector: tuple[float, ...]
    text: str
    author: str | None = None
    likes: int = 0
    replies: int = 0
    sentiment: float = 0.0
    stored_at: float = 0.0

    @property
    def engagement(self) -> int:
        return self.likes + self.replies


@dataclass(frozen=True)
class Candidate:
    """A merged retrieval candidate with score provenance."""

    entry: VectorEntry
    similarity: float
    strategies: tuple[str, ...]
    expansions: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    strategy_weight: float = 0.0


@dataclass(frozen=True)
class ScoreBreakdown:
    relevance: float
    quality: float
    diversity: float
    recency: float
    engagement: float
    context: float

    def as_dict(self) -> dict[str, float]:
        return {
            "relevance": self.relevance,
            "quality": self.quality,
            "diversity": self.diversity,
            "recency": self.recency,
            "engagement": self.engagement,
            "context": self.context,
        }


@dataclass(frozen=True)
class RankedResult:
    """A ranked, diversity-filtered search result. Never cached."""

    candidate: Candidate
    scores: ScoreBreakdown
    final_score: float
    rank: int
    confidence: float
    snippet: str = ""
    explanation: str = ""

    def to_dict(self) -> dict[str, Any]:
        entry = self.candidate.entry
        return {
            "id": entry.id,
            "text": entry.text,
            "author": entry.author,
            "likes": entry.likes,
            "replies": entry.replies,
            "similarity": self.candidate.similarity,
            "strategies": list(self.candidate.strategies),
            "scores": self.scores.as_dict(),
            "final_score": self.final_score,
            "rank": self.rank,
            "confidence": self.confidence,
            "snippet": self.snippet,
            "explanation": self.explanation,
        }
