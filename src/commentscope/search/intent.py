"""
Query intent classification and query expansion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

INTENT_PATTERNS: dict[str, re.Pattern[str]] = {
    "business": re.compile(
        r"\b(?:pay|buy|purchase|cost|price|monetize|sell|offer)\w*", re.IGNORECASE
    ),
    "technical": re.compile(
        r"\b(?:how|tutorial|guide|implement|code|fix|solve|debug)\w*", re.IGNORECASE
    ),
    "opinion": re.compile(
        r"\b(?:think|feel|opinion|believe|best|worst|recommend)\w*", re.IGNORECASE
    ),
    "factual": re.compile(
        r"\b(?:what|when|where|who|why|which|define|explain)\w*", re.IGNORECASE
    ),
    "comparison": re.compile(
        r"\b(?:vs|versus|compare|difference|better|worse)\w*", re.IGNORECASE
    ),
    "emotional": re.compile(
        r"\b(?:love|hate|angry|happy|sad|frustrated|excited)\w*", re.IGNORECASE
    ),
}

SYNONYMS: dict[str, tuple[str, ...]] = {
    "tutorial": ("guide", "how-to", "lesson", "course"),
    "problem": ("issue", "error", "bug", "trouble"),
    "good": ("great", "excellent", "best", "awesome"),
    "bad": ("poor", "terrible", "worst", "awful"),
    "fix": ("repair", "solve", "resolve"),
}

INTENT_SUFFIXES: dict[str, tuple[str, ...]] = {
    "business": (" monetization", " business opportunity"),
    "technical": (" solution",),
}

_POSITIVE = re.compile(r"\b(?:good|great|love|best|awesome|excellent)\w*", re.IGNORECASE)
_NEGATIVE = re.compile(r"\b(?:bad|hate|worst|terrible|awful|poor)\w*", re.IGNORECASE)
_QUOTED = re.compile(r'"([^"]+)"')
_NUMBER = re.compile(r"\d+")


@dataclass(frozen=True)
class QueryIntent:
    """Classified query with the per-family densities behind it."""

    type: str
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)
    sentiment: str = "neutral"
    complexity: str = "simple"
    entities: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "confidence": self.confidence,
            "scores": dict(self.scores),
            "sentiment": self.sentiment,
            "complexity": self.complexity,
            "entities": list(self.entities),
        }


def classify_intent(query: str) -> QueryIntent:
    """Pick the intent family with the highest match density; ties are unknown."""
    tokens = query.split()
    if not tokens:
        return QueryIntent(type="unknown", confidence=0.0)

    scores = {
        name: len(pattern.findall(query)) / len(tokens)
        for name, pattern in INTENT_PATTERNS.items()
    }
    best = max(scores.values())
    winners = [name for name, score in scores.items() if score == best]
    if best == 0 or len(winners) > 1:
        intent_type = "unknown"
    else:
        intent_type = winners[0]

    return QueryIntent(
        type=intent_type,
        confidence=min(1.0, best) if intent_type != "unknown" else 0.0,
        scores=scores,
        sentiment=_sentiment(query),
        complexity=_complexity(query, tokens),
        entities=_entities(query, tokens),
    )


def intent_matches(intent_type: str, text: str) -> bool | None:
    """Whether *text* uses the vocabulary of *intent_type*; None for unknown."""
    pattern = INTENT_PATTERNS.get(intent_type)
    if pattern is None:
        return None
    return bool(pattern.search(text))


def expand_query(query: str, intent_type: str, max_expansions: int = 3) -> list[str]:
    """Synonym substitutions first, then intent suffixes, de-duplicated."""
    expansions: list[str] = []
    for word in query.lower().split():
        for synonym in SYNONYMS.get(word, ()):
            expansions.append(
                re.sub(rf"\b{re.escape(word)}\b", synonym, query, flags=re.IGNORECASE)
            )
    for suffix in INTENT_SUFFIXES.get(intent_type, ()):
        expansions.append(query + suffix)

    unique: list[str] = []
    for expansion in expansions:
        if expansion != query and expansion not in unique:
            unique.append(expansion)
    return unique[:max_expansions]


def _sentiment(query: str) -> str:
    if _POSITIVE.search(query):
        return "positive"
    if _NEGATIVE.search(query):
        return "negative"
    return "neutral"


def _complexity(query: str, tokens: list[str]) -> str:
    if len(tokens) < 3:
        return "simple"
    if len(tokens) > 10 or " AND " in query or " OR " in query:
        return "complex"
    return "moderate"


def _entities(query: str, tokens: list[str]) -> tuple[str, ...]:
    found: list[str] = [m for m in _QUOTED.findall(query)]
    found.extend(_NUMBER.findall(query))
    found.extend(token for token in tokens[1:] if len(token) > 2 and token[0].isupper())
    return tuple(dict.fromkeys(found))
