"""Tests for CollaborativeGenerator."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from personalization.generators.collaborative import CollaborativeGenerator
from personalization.models import (
    BehaviorType,
    ContentType,
    RecommendationReason,
    RecommendationSource,
)

from conftest import clock, log


@pytest.fixture
def generator(similarity_index, behavior_store, content_store) -> CollaborativeGenerator:
    return CollaborativeGenerator(similarity_index, behavior_store, content_store, clock=clock)


@pytest.fixture
def neighbour(behavior_log) -> str:
    """A cooking fan who also saved and shared things the target has not seen."""
    for cid in ("cook1", "cook2"):
        log(behavior_log, "u_a", BehaviorType.LIKE, cid)
    for cid in ("cook1", "cook2"):
        log(behavior_log, "u_b", BehaviorType.LIKE, cid)
    log(behavior_log, "u_b", BehaviorType.SAVE, "cook3", hours_ago=2)
    log(behavior_log, "u_b", BehaviorType.LIKE, "cook_new", hours_ago=2)
    log(behavior_log, "u_b", BehaviorType.VIEW, "travel1", hours_ago=2)
    return "u_b"


class TestCollaborativeGenerator:
    def test_source_tag(self, generator) -> None:
        assert generator.source is RecommendationSource.COLLABORATIVE_FILTERING

    def test_recommends_neighbour_engagement(self, generator, neighbour) -> None:
        recs = generator.generate("u_a", ContentType.POST, 10)
        assert [r.content_id for r in recs] == ["cook3", "cook_new"]
        assert recs[0].score == pytest.approx(1.0)
        assert 0.0 < recs[1].score < 1.0
        assert recs[0].reason is RecommendationReason.FRIENDS_ENGAGED

    def test_views_are_not_positive_signals(self, generator, neighbour) -> None:
        ids = {r.content_id for r in generator.generate("u_a", ContentType.POST, 10)}
        assert "travel1" not in ids

    def test_seen_content_excluded(self, generator, neighbour) -> None:
        ids = {r.content_id for r in generator.generate("u_a", ContentType.POST, 10)}
        assert ids.isdisjoint({"cook1", "cook2"})

    def test_metadata(self, generator, neighbour) -> None:
        rec = generator.generate("u_a", ContentType.POST, 1)[0]
        assert rec.metadata["similarUserCount"] == 1
        assert rec.metadata["rawScore"] > 0.0
        assert rec.metadata["explanation"]

    def test_exclude_ids(self, generator, neighbour) -> None:
        recs = generator.generate("u_a", ContentType.POST, 10, exclude_ids={"cook3"})
        assert [r.content_id for r in recs] == ["cook_new"]

    def test_cold_start_returns_empty(self, generator, neighbour) -> None:
        assert generator.generate("nobody", ContentType.POST, 10) == []

    def test_single_user_returns_empty(self, generator, behavior_log) -> None:
        log(behavior_log, "lonely", BehaviorType.LIKE, "cook1")
        assert generator.generate("lonely", ContentType.POST, 10) == []

    def test_zero_similarity_neighbours_ignored(self, behavior_store, content_store) -> None:
        index = MagicMock()
        index.nearest_users.return_value = [("u_b", 0.0)]
        gen = CollaborativeGenerator(index, behavior_store, content_store, clock=clock)
        assert gen.generate("u_a", ContentType.POST, 10) == []

    def test_unknown_content_dropped(self, behavior_store, behavior_log, content_store) -> None:
        log(behavior_log, "u_b", BehaviorType.SHARE, "deleted_post")
        index = MagicMock()
        index.nearest_users.return_value = [("u_b", 0.8)]
        gen = CollaborativeGenerator(index, behavior_store, content_store, clock=clock)
        assert gen.generate("u_a", ContentType.POST, 10) == []
