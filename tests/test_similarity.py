"""Tests for personalization.similarity."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from personalization.models import BehaviorType, InterestProfile
from personalization.similarity import SimilarityIndex, cosine_similarity

from conftest import log


def _make_index(topic_maps: dict[str, dict[str, float]], ttl: float = 0) -> tuple[SimilarityIndex, MagicMock]:
    builder = MagicMock()
    builder.build.side_effect = lambda uid: InterestProfile(
        user_id=uid, topics=dict(topic_maps.get(uid, {}))
    )
    store = MagicMock()
    store.user_ids.return_value = sorted(topic_maps)
    return SimilarityIndex(builder, store, ttl_seconds=ttl), store


class TestCosineSimilarity:
    def test_identical(self) -> None:
        assert cosine_similarity({"a": 1.0, "b": 2.0}, {"a": 1.0, "b": 2.0}) == pytest.approx(1.0)

    def test_disjoint(self) -> None:
        assert cosine_similarity({"a": 1.0}, {"b": 1.0}) == 0.0

    def test_different_key_sets(self) -> None:
        # (3*4) / (5 * 4)
        assert cosine_similarity({"a": 3.0, "b": 4.0}, {"a": 4.0}) == pytest.approx(0.6)

    def test_empty(self) -> None:
        assert cosine_similarity({}, {"a": 1.0}) == 0.0

    def test_symmetric(self) -> None:
        a = {"x": 1.0, "y": 0.5}
        b = {"y": 2.0, "z": 1.0}
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


class TestNearestUsers:
    def test_identical_profiles_are_fully_similar(self) -> None:
        weights = {"cooking": 0.8, "travel": 0.2}
        index, _ = _make_index({"a": weights, "b": weights})
        assert index.nearest_users("a", 1) == [("b", pytest.approx(1.0))]

    def test_sorted_by_similarity(self) -> None:
        index, _ = _make_index(
            {
                "me": {"cooking": 1.0, "travel": 1.0},
                "close": {"cooking": 1.0, "travel": 0.9},
                "far": {"cooking": 1.0, "cars": 5.0},
                "none": {"cars": 1.0},
            }
        )
        result = index.nearest_users("me", 10)
        assert [uid for uid, _ in result] == ["close", "far", "none"]
        assert result[-1][1] == 0.0
        assert all(0.0 <= sim <= 1.0 for _, sim in result)

    def test_ties_broken_by_user_id(self) -> None:
        index, _ = _make_index({"me": {"a": 1.0}, "zoe": {"a": 2.0}, "bob": {"a": 1.0}})
        assert [uid for uid, _ in index.nearest_users("me", 10)] == ["bob", "zoe"]

    def test_k_limits_results(self) -> None:
        index, _ = _make_index({f"u{i}": {"a": 1.0} for i in range(5)})
        assert len(index.nearest_users("u0", 2)) == 2
        assert len(index.nearest_users("u0", 10)) == 4

    def test_empty_target_profile(self) -> None:
        index, _ = _make_index({"me": {}, "other": {"a": 1.0}})
        assert index.nearest_users("me", 5) == []

    def test_empty_profiles_are_not_neighbours(self) -> None:
        index, _ = _make_index({"me": {"a": 1.0}, "blank": {}, "other": {"a": 1.0}})
        assert [uid for uid, _ in index.nearest_users("me", 5)] == ["other"]

    def test_only_user_in_system(self) -> None:
        index, _ = _make_index({"me": {"a": 1.0}})
        assert index.nearest_users("me", 5) == []

    def test_snapshot_reused_within_ttl(self) -> None:
        index, store = _make_index({"a": {"x": 1.0}, "b": {"x": 1.0}}, ttl=3600)
        index.nearest_users("a", 5)
        index.nearest_users("b", 5)
        assert store.user_ids.call_count == 1

    def test_refresh_rebuilds_snapshot(self) -> None:
        index, store = _make_index({"a": {"x": 1.0}, "b": {"x": 1.0}}, ttl=3600)
        index.nearest_users("a", 5)
        index.refresh()
        assert store.user_ids.call_count == 2

    def test_refresh_returns_new_snapshot(self) -> None:
        index, _ = _make_index({"a": {"x": 1.0}, "b": {"y": 1.0}}, ttl=3600)
        snapshot = index.refresh()
        assert snapshot.user_ids == ["a", "b"]
        assert snapshot.topic_index == {"x": 0, "y": 1}
        assert index.refresh() is not snapshot


class TestWithRealProfiles:
    def test_shared_interests(self, similarity_index, behavior_log, cooking_fan) -> None:
        log(behavior_log, "u_also_cook", BehaviorType.LIKE, "cook_new")
        log(behavior_log, "u_travel", BehaviorType.LIKE, "travel1")
        result = dict(similarity_index.nearest_users(cooking_fan, 5))
        assert result["u_also_cook"] == pytest.approx(1.0)
        assert result["u_travel"] == 0.0
