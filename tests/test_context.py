"""Tests for context snapshots."""

from __future__ import annotations

from dataclasses import replace

import pytest

from commentscope.collection import VectorCollection
from commentscope.models import VectorEntry
from commentscope.policy import DEFAULT_POLICY, HOUR
from commentscope.search import ContextSnapshotBuilder
from commentscope.search.context import extract_topic, linear_slope

T0 = 1_700_000_000.0


def _one_hot(index: int, dim: int = 16) -> tuple[float, ...]:
    return tuple(1.0 if i == index else 0.0 for i in range(dim))


def _entry(entry_id: str, index: int, stored_at: float, **kwargs) -> VectorEntry:
    return VectorEntry(
        id=entry_id,
        vector=_one_hot(index),
        text=kwargs.pop("text", f"comment number {entry_id}"),
        stored_at=stored_at,
        **kwargs,
    )


def test_helpers() -> None:
    assert extract_topic("The microphone sounds terrible during quiet scenes") == (
        "microphone sounds terrible"
    )
    assert linear_slope([0, 1, 2, 3], [1, 3, 5, 7]) == pytest.approx(2.0)
    assert linear_slope([1, 1, 1], [1, 2, 3]) == 0.0


def test_empty_collection_snapshot() -> None:
    snapshot = ContextSnapshotBuilder().build(VectorCollection("empty"))

    assert snapshot.temporal.periods == ()
    assert snapshot.conversational.threads == ()
    assert snapshot.social.community_type == "unknown"
    assert snapshot.summary()["activity_periods"] == 0


def test_activity_periods_split_on_gaps() -> None:
    entries = [
        _entry("a", 0, T0),
        _entry("b", 1, T0 + 600),
        _entry("c", 2, T0 + 600 + HOUR + 1),
    ]

    temporal = ContextSnapshotBuilder().temporal(entries)

    assert [p.entry_ids for p in temporal.periods] == [("a", "b"), ("c",)]
    assert temporal.period_size("a") == 2
    assert temporal.largest_period == 2
    assert temporal.sentiment_trend is None


def test_trends_need_enough_points() -> None:
    entries = [
        _entry(f"e{i}", i, T0 + i * HOUR, sentiment=-0.5 + 0.1 * i, likes=10 * i)
        for i in range(10)
    ]
    builder = ContextSnapshotBuilder()

    temporal = builder.temporal(entries)

    assert temporal.sentiment_slope == pytest.approx(0.1)
    assert temporal.sentiment_trend == "improving"
    assert temporal.engagement_slope == pytest.approx(10.0)
    assert temporal.engagement_trend == "increasing"
    assert builder.temporal(entries[:9]).sentiment_trend is None


def test_threads_from_mentions_and_proximity() -> None:
    entries = [
        _entry("a", 0, T0, author="alice", text="Great breakdown of the mixing process"),
        _entry("b", 1, T0 + 2 * HOUR, author="bob", text="@alice agreed, the mixing section rocks"),
        _entry("c", 2, T0 + 5 * HOUR, author="carol", text="Anyone know the microphone model"),
        _entry("d", 3, T0 + 5 * HOUR + 60, author="dave", text="Looks like a shure microphone"),
        _entry("e", 4, T0 + 9 * HOUR, author="erin", text="First!"),
    ]

    conversational = ContextSnapshotBuilder().conversational(entries)

    assert [t.entry_ids for t in conversational.threads] == [("a", "b"), ("c", "d")]
    assert conversational.thread_for("e") is None
    assert conversational.discussion_topics == ()


def test_similar_vectors_form_a_discussion() -> None:
    entries = [
        VectorEntry(id=f"s{i}", vector=(1.0, 0.05 * i), text="mixing levels sound great", stored_at=T0 + i * HOUR)
        for i in range(3)
    ]

    conversational = ContextSnapshotBuilder().conversational(entries)

    assert len(conversational.threads) == 1
    assert conversational.threads[0].is_discussion is True
    assert conversational.discussion_topics == ("mixing levels sound",)


def test_social_context() -> None:
    entries = [_entry(f"e{i}", i, T0 + i * HOUR, author=f"user{i}", likes=1, sentiment=0.5) for i in range(9)]
    entries.append(_entry("viral", 9, T0 + 10 * HOUR, author="star", likes=100, replies=0, sentiment=0.5))

    social = ContextSnapshotBuilder().social(entries)

    assert social.community_type == "supportive"
    assert social.engagement_tier == "medium"
    assert social.sentiment_distribution == {"positive": 10, "neutral": 0, "negative": 0}
    assert social.author_influence["star"] == 1.0
    assert social.author_influence["user0"] == pytest.approx(0.01)
    assert social.viral_ids == frozenset({"viral"})


def test_discussion_community() -> None:
    entries = [_entry(f"e{i}", i, T0 + i * HOUR, replies=3) for i in range(3)]

    assert ContextSnapshotBuilder().social(entries).community_type == "discussion"


def test_social_cutoffs_come_from_policy() -> None:
    entries = [
        _entry(f"e{i}", i, T0 + i * HOUR, author=f"user{i}", replies=3, sentiment=0.3)
        for i in range(3)
    ]
    policy = replace(
        DEFAULT_POLICY,
        discussion_mean_replies=5.0,
        community_sentiment_cutoff=0.4,
        neutral_sentiment_band=0.35,
    )

    social = ContextSnapshotBuilder(policy).social(entries)

    assert social.community_type == "casual"
    assert social.sentiment_distribution == {"positive": 0, "neutral": 3, "negative": 0}
