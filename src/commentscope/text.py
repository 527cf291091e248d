"""
Tokenisation helpers shared by scoring, embedding and retrieval.
"""

from __future__ import annotations

import re

STOP_WORDS = frozenset(
    {
        "a", "about", "after", "all", "also", "am", "an", "and", "any", "are",
        "as", "at", "be", "been", "but", "by", "can", "could", "did", "do",
        "does", "for", "from", "had", "has", "have", "he", "her", "his", "i",
        "if", "in", "into", "is", "it", "its", "just", "me", "my", "not", "of",
        "on", "or", "our", "out", "she", "so", "than", "that", "the", "their",
        "them", "then", "there", "these", "they", "this", "those", "to", "too",
        "up", "very", "was", "we", "were", "will", "with", "would", "you",
        "your",
    }
)

_WORD = re.compile(r"\S+")
_TERM = re.compile(r"[a-zA-Z0-9_]{3,}")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_MENTION = re.compile(r"@([\w.\-]+)")


def words(text: str) -> list[str]:
    """Whitespace-delimited tokens."""
    return _WORD.findall(text)


def unique_word_ratio(text: str) -> float:
    tokens = [token.lower() for token in words(text)]
    if not tokens:
        return 0.0
    return len(set(tokens)) / len(tokens)


def content_terms(text: str, max_terms: int | None = None) -> list[str]:
    """Distinct lower-case terms of three or more characters, minus stop words."""
    unique_terms: list[str] = []
    for term in _TERM.findall(text.lower()):
        if term in STOP_WORDS or term in unique_terms:
            continue
        unique_terms.append(term)
        if max_terms is not None and len(unique_terms) >= max_terms:
            break
    return unique_terms


def sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def sentence_segments(text: str) -> int:
    """Number of pieces produced by splitting on terminal punctuation."""
    return len(_SENTENCE_SPLIT.split(text))


def mentions(text: str) -> set[str]:
    return {name.lower() for name in _MENTION.findall(text)}
