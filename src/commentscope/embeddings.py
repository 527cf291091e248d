"""
Embedding providers.

``GeminiEmbeddingProvider`` wraps the Google GenAI embedding API with
configurable model, dimensions and batch size. ``LocalDeterministicProvider``
derives a fixed-size vector from hand-built text features and a hashed bag of
content words, so it needs no network and always returns the same vector for
the same text.
"""

from __future__ import annotations

import hashlib
import math
import os
import re
from typing import Any, Protocol

from google.genai import Client as GenAIClient

from .config import resolve_provider_name
from .text import content_terms, sentence_segments, words


_DEFAULT_MODEL = "gemini-embedding-001"
_DEFAULT_DIM = 768
_DEFAULT_BATCH_SIZE = 50

DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"
QUERY_TASK = "RETRIEVAL_QUERY"


class EmbeddingProvider(Protocol):
    """Uniform interface over remote and local embedding generators."""

    provider_id: str
    dim: int

    def generate_embedding(self, text: str, *, task_type: str = DOCUMENT_TASK) -> list[float]:
        """Embed one text."""

    def generate_batch_embeddings(
        self,
        texts: list[str],
        *,
        task_type: str = DOCUMENT_TASK,
    ) -> list[list[float]]:
        """Embed many texts, preserving order."""


class GeminiEmbeddingProvider:
    """Generate text embeddings via Google GenAI."""

    provider_id = "gemini"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        batch_size: int | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("COMMENTSCOPE_EMBEDDING_MODEL", _DEFAULT_MODEL)
        self.dim = dim or int(os.getenv("COMMENTSCOPE_EMBEDDING_DIM", str(_DEFAULT_DIM)))
        self.batch_size = batch_size or int(
            os.getenv("COMMENTSCOPE_EMBEDDING_BATCH_SIZE", str(_DEFAULT_BATCH_SIZE))
        )

        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or os.getenv("GOOGLE_API_KEY")
            if resolved_key is None:
                raise ValueError(
                    "GOOGLE_API_KEY not found. "
                    "Provide api_key or set the environment variable."
                )
            self._client = GenAIClient(api_key=resolved_key)

    def generate_batch_embeddings(
        self,
        texts: list[str],
        *,
        task_type: str = DOCUMENT_TASK,
    ) -> list[list[float]]:
        """Embed a list of texts in batches.

        Returns a list of embedding vectors in the same order as *texts*.
        """
        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            result = self._client.models.embed_content(
                model=self.model,
                contents=batch,
                config={
                    "task_type": task_type,
                    "output_dimensionality": self.dim,
                },
            )
            for emb in result.embeddings:
                all_embeddings.append(list(emb.values))
        if len(all_embeddings) != len(texts):
            raise RuntimeError(
                f"Embedding API returned {len(all_embeddings)} vectors for {len(texts)} texts."
            )
        return all_embeddings

    def generate_embedding(self, text: str, *, task_type: str = DOCUMENT_TASK) -> list[float]:
        result = self._client.models.embed_content(
            model=self.model,
            contents=[text],
            config={
                "task_type": task_type,
                "output_dimensionality": self.dim,
            },
        )
        return list(result.embeddings[0].values)


_QUESTION = re.compile(r"question|ask|how|why|what", re.IGNORECASE)
_TRANSACTIONAL = re.compile(r"pay|buy|purchase|cost", re.IGNORECASE)
_POSITIVE = re.compile(r"good|great|excellent|love", re.IGNORECASE)
_NEGATIVE = re.compile(r"bad|poor|hate|terrible", re.IGNORECASE)

FEATURE_COUNT = 13


def extract_features(text: str) -> list[float]:
    """Statistical, lexical and structural features, in a fixed order."""
    length = len(text)
    tokens = words(text)
    unique_count = len({token.lower() for token in tokens})
    upper = sum(1 for ch in text if ch.isupper())
    digits = sum(1 for ch in text if ch.isdigit())

    statistical = [
        length / 1000,
        len(tokens) / 100,
        unique_count / 100,
        upper / length if length else 0.0,
        digits / length if length else 0.0,
    ]
    lexical = [
        1.0 if _QUESTION.search(text) else 0.0,
        1.0 if _TRANSACTIONAL.search(text) else 0.0,
        1.0 if _POSITIVE.search(text) else 0.0,
        -1.0 if _NEGATIVE.search(text) else 0.0,
    ]
    structural = [
        1.0 if "?" in text else 0.0,
        0.5 if "!" in text else 0.0,
        sentence_segments(text) / 10,
        min(len(text.split(",")) / 5, 1.0),
    ]
    return statistical + lexical + structural


def _bucket(term: str, buckets: int) -> int:
    digest = hashlib.md5(term.encode("utf-8")).hexdigest()
    return int(digest, 16) % buckets


class LocalDeterministicProvider:
    """Offline embedding built from text features plus hashed content words."""

    def __init__(self, *, dim: int | None = None, provider_id: str = "local") -> None:
        self.dim = dim or int(os.getenv("COMMENTSCOPE_EMBEDDING_DIM", str(_DEFAULT_DIM)))
        if self.dim <= FEATURE_COUNT:
            raise ValueError(
                f"Local embeddings need more than {FEATURE_COUNT} dimensions, got {self.dim}."
            )
        self.provider_id = provider_id

    def generate_embedding(self, text: str, *, task_type: str = DOCUMENT_TASK) -> list[float]:
        vector = extract_features(text) + [0.0] * (self.dim - FEATURE_COUNT)
        residual = self.dim - FEATURE_COUNT
        for term in content_terms(text):
            vector[FEATURE_COUNT + _bucket(term, residual)] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]

    def generate_batch_embeddings(
        self,
        texts: list[str],
        *,
        task_type: str = DOCUMENT_TASK,
    ) -> list[list[float]]:
        return [self.generate_embedding(text, task_type=task_type) for text in texts]


def create_embedding_provider(
    name: str | None = None,
    *,
    dim: int | None = None,
    client: Any | None = None,
) -> EmbeddingProvider:
    """Build the configured provider (``gemini`` or ``local``)."""
    resolved = resolve_provider_name(name)
    if resolved == "gemini":
        return GeminiEmbeddingProvider(dim=dim, client=client)
    return LocalDeterministicProvider(dim=dim)
