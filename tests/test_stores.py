"""Tests for personalization.stores in-memory implementations."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from personalization.models import BehaviorEvent, BehaviorType, ContentType
from personalization.stores import InMemoryBehaviorStore, InMemoryContentStore

from conftest import NOW, make_item


def _event(user_id: str, content_id: str, hours_ago: float, ct: ContentType = ContentType.POST):
    return BehaviorEvent(
        user_id=user_id,
        behavior_type=BehaviorType.VIEW,
        content_id=content_id,
        content_type=ct,
        timestamp=NOW - timedelta(hours=hours_ago),
    )


class TestInMemoryContentStore:
    def test_get_items_preserves_request_order(self, content_store) -> None:
        items = content_store.get_items(["travel1", "cook1"], ContentType.POST)
        assert [i.content_id for i in items] == ["travel1", "cook1"]

    def test_get_items_skips_unknown_ids(self, content_store) -> None:
        items = content_store.get_items(["cook1", "missing"], ContentType.POST)
        assert [i.content_id for i in items] == ["cook1"]

    def test_get_items_is_scoped_by_content_type(self, content_store) -> None:
        assert content_store.get_items(["cook1"], ContentType.REEL) == []

    def test_list_items_newest_first(self, content_store) -> None:
        items = content_store.list_items(ContentType.POST, limit=3)
        assert [i.content_id for i in items] == ["untagged", "cook_new", "cars"]

    def test_list_items_filters_content_type(self) -> None:
        store = InMemoryContentStore(
            [make_item("p1", []), make_item("r1", [], content_type=ContentType.REEL)]
        )
        assert [i.content_id for i in store.list_items(ContentType.REEL)] == ["r1"]

    def test_add_items_replaces_existing(self) -> None:
        store = InMemoryContentStore([make_item("p1", ["old"])])
        store.add_items([make_item("p1", ["new"])])
        assert store.get_items(["p1"], ContentType.POST)[0].topics == ["new"]


class TestInMemoryBehaviorStore:
    def test_append_assigns_increasing_sequence(self) -> None:
        store = InMemoryBehaviorStore()
        first = store.append(_event("u1", "p1", 1))
        second = store.append(_event("u1", "p2", 1))
        assert 0 < first.sequence < second.sequence

    def test_out_of_order_events_are_sorted_by_timestamp(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("u1", "late", 1))
        store.append(_event("u1", "early", 5))
        ids = [e.content_id for e in store.events_for_user("u1")]
        assert ids == ["early", "late"]

    def test_equal_timestamps_keep_insertion_order(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("u1", "a", 2))
        store.append(_event("u1", "b", 2))
        assert [e.content_id for e in store.events_for_user("u1")] == ["a", "b"]

    def test_events_for_user_since_and_limit(self) -> None:
        store = InMemoryBehaviorStore()
        for hours in (10, 5, 3, 1):
            store.append(_event("u1", f"p{hours}", hours))
        recent = store.events_for_user("u1", since=NOW - timedelta(hours=6))
        assert [e.content_id for e in recent] == ["p5", "p3", "p1"]
        latest = store.events_for_user("u1", limit=2)
        assert [e.content_id for e in latest] == ["p3", "p1"]

    def test_events_for_unknown_user_is_empty(self) -> None:
        assert InMemoryBehaviorStore().events_for_user("nobody") == []

    def test_events_since_filters_time_and_type(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("u1", "old", 48))
        store.append(_event("u2", "post", 2))
        store.append(_event("u3", "reel", 2, ContentType.REEL))
        since = NOW - timedelta(days=1)
        assert {e.content_id for e in store.events_since(since)} == {"post", "reel"}
        posts = store.events_since(since, content_type=ContentType.POST)
        assert [e.content_id for e in posts] == ["post"]

    def test_user_ids_sorted(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("zed", "p", 1))
        store.append(_event("amy", "p", 1))
        assert store.user_ids() == ["amy", "zed"]

    def test_version_grows_with_log(self) -> None:
        store = InMemoryBehaviorStore()
        assert store.version("u1") == 0
        store.append(_event("u1", "p", 1))
        store.append(_event("u1", "p", 1))
        assert store.version("u1") == 2

    def test_failed_append_leaves_log_unchanged(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("u1", "p1", 2))
        naive = BehaviorEvent("u2", BehaviorType.VIEW, "p2", ContentType.POST, datetime(2024, 6, 1, 11))
        with pytest.raises(TypeError):
            store.append(naive)
        assert store.user_ids() == ["u1"]
        assert store.version("u2") == 0
        assert store.events_for_user("u2") == []
        assert [e.content_id for e in store.events_since(NOW - timedelta(days=1))] == ["p1"]

    def test_failed_append_for_known_user(self) -> None:
        store = InMemoryBehaviorStore()
        store.append(_event("u1", "p1", 2))
        naive = BehaviorEvent("u1", BehaviorType.VIEW, "p2", ContentType.POST, datetime(2024, 6, 1, 11))
        with pytest.raises(TypeError):
            store.append(naive)
        assert store.version("u1") == 1
        assert [e.content_id for e in store.events_for_user("u1", since=NOW - timedelta(days=1))] == ["p1"]
