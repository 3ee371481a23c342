"""Shared pytest fixtures for all personalization tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from personalization.behavior_log import BehaviorLog
from personalization.models import BehaviorEvent, BehaviorType, ContentItem, ContentType
from personalization.profile import InterestProfileBuilder
from personalization.similarity import SimilarityIndex
from personalization.stores import InMemoryBehaviorStore, InMemoryContentStore


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def clock() -> datetime:
    return NOW


def make_item(
    content_id: str,
    topics: list[str],
    hours_old: float = 24.0,
    content_type: ContentType = ContentType.POST,
    creator_id: str | None = "author",
) -> ContentItem:
    return ContentItem(
        content_id=content_id,
        content_type=content_type,
        created_at=NOW - timedelta(hours=hours_old),
        topics=topics,
        creator_id=creator_id,
    )


def log(
    behavior_log: BehaviorLog,
    user_id: str,
    behavior_type: BehaviorType,
    content_id: str,
    hours_ago: float = 1.0,
    content_type: ContentType = ContentType.POST,
) -> BehaviorEvent:
    return behavior_log.log_behavior(
        user_id,
        behavior_type,
        content_id,
        content_type,
        timestamp=NOW - timedelta(hours=hours_ago),
    )


# ---------------------------------------------------------------------------
# Content fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_items() -> list[ContentItem]:
    """Posts about cooking and travel, plus a couple of unrelated ones."""
    return [
        make_item("cook1", ["cooking"], hours_old=50),
        make_item("cook2", ["cooking"], hours_old=49),
        make_item("cook3", ["cooking"], hours_old=48),
        make_item("cook4", ["cooking"], hours_old=47),
        make_item("cook5", ["cooking"], hours_old=46),
        make_item("cook_new", ["cooking"], hours_old=2),
        make_item("travel1", ["travel"], hours_old=30),
        make_item("travel2", ["travel"], hours_old=20),
        make_item("mixed", ["cooking", "travel"], hours_old=10),
        make_item("cars", ["cars"], hours_old=5),
        make_item("untagged", [], hours_old=1),
    ]


@pytest.fixture
def content_store(sample_items) -> InMemoryContentStore:
    return InMemoryContentStore(sample_items)


@pytest.fixture
def behavior_store() -> InMemoryBehaviorStore:
    return InMemoryBehaviorStore()


@pytest.fixture
def behavior_log(behavior_store) -> BehaviorLog:
    return BehaviorLog(behavior_store, clock=clock)


@pytest.fixture
def profile_builder(behavior_store, content_store) -> InterestProfileBuilder:
    return InterestProfileBuilder(behavior_store, content_store, clock=clock)


@pytest.fixture
def similarity_index(profile_builder, behavior_store) -> SimilarityIndex:
    return SimilarityIndex(profile_builder, behavior_store, ttl_seconds=0)


@pytest.fixture
def cooking_fan(behavior_log) -> str:
    """User who liked five cooking posts."""
    for i in range(1, 6):
        log(behavior_log, "u_cook", BehaviorType.LIKE, f"cook{i}", hours_ago=i)
    return "u_cook"
