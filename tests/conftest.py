from __future__ import annotations

from typing import Iterator

import pytest

from commentscope.cache import EmbeddingCacheStore
from commentscope.decision import EmbeddingDecisionEngine
from commentscope.embeddings import LocalDeterministicProvider
from commentscope.learning import LearningStore
from commentscope.policy import DEFAULT_POLICY, ScoringPolicy
from commentscope.quota import QuotaTracker
from commentscope.service import CommentSearchEngine
from commentscope.storage import DuckDBKeyValueStore

START_TIME = 1_700_000_000.0

# A 150-character question that clears the embedding gate with default weights.
QUESTION_TEXT = (
    "How do I fix the audio problem in this tutorial? The sound cuts out "
    "after ten minutes and I tried every setting in the app without any luck."
)


class FakeClock:
    """Manually advanced clock for deterministic window and age checks."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FailingProvider:
    """Provider whose every call raises."""

    def __init__(self, dim: int = 64, provider_id: str = "gemini") -> None:
        self.dim = dim
        self.provider_id = provider_id
        self.calls = 0

    def generate_embedding(self, text: str, *, task_type: str = "RETRIEVAL_DOCUMENT") -> list[float]:
        self.calls += 1
        raise RuntimeError("embedding service unavailable")

    def generate_batch_embeddings(
        self, texts: list[str], *, task_type: str = "RETRIEVAL_DOCUMENT"
    ) -> list[list[float]]:
        self.calls += 1
        raise RuntimeError("embedding service unavailable")


class BrokenDiskStore(DuckDBKeyValueStore):
    """In-memory store whose writes (and optionally reads) fail like a bad disk."""

    def __init__(self, *, fail_reads: bool = False) -> None:
        super().__init__(":memory:")
        self.fail_reads = fail_reads
        self.failed_writes: list[str] = []

    def get(self, key: str) -> bytes | None:
        if self.fail_reads:
            raise OSError("disk I/O error")
        return super().get(key)

    def set(self, key: str, value: bytes) -> None:
        self.failed_writes.append(key)
        raise OSError("disk I/O error")


def build_decision_engine(
    store: DuckDBKeyValueStore,
    clock: FakeClock,
    *,
    provider=None,
    fallback=None,
    policy: ScoringPolicy = DEFAULT_POLICY,
    sleep=None,
) -> EmbeddingDecisionEngine:
    provider = provider or LocalDeterministicProvider(dim=64)
    return EmbeddingDecisionEngine(
        cache=EmbeddingCacheStore(store, policy, clock=clock),
        quota=QuotaTracker(policy, clock=clock),
        provider=provider,
        learning=LearningStore(policy, clock=clock),
        policy=policy,
        fallback=fallback,
        clock=clock,
        sleep=sleep or RecordingSleep(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Iterator[DuckDBKeyValueStore]:
    kv = DuckDBKeyValueStore(":memory:")
    yield kv
    kv.close()


@pytest.fixture
def engine(clock: FakeClock) -> Iterator[CommentSearchEngine]:
    search_engine = CommentSearchEngine(
        store=DuckDBKeyValueStore(":memory:"),
        provider=LocalDeterministicProvider(dim=64),
        clock=clock,
        sleep=RecordingSleep(),
    )
    yield search_engine
    search_engine.close()
