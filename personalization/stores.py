"""Content and behavior store interfaces, plus thread-safe in-memory versions.

The ranking core only talks to these narrow interfaces.  Production
deployments back them with the application database; implementations
signal connectivity problems by raising
:class:`~personalization.errors.UpstreamUnavailable`.
"""

from __future__ import annotations

import bisect
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from personalization.models import BehaviorEvent, ContentItem, ContentType

logger = logging.getLogger(__name__)


class ContentStore(ABC):
    """Read access to content metadata."""

    @abstractmethod
    def get_items(self, ids: Iterable[str], content_type: ContentType) -> list[ContentItem]:
        """Return the items with the given ids, in request order.

        Unknown ids are skipped silently.
        """

    @abstractmethod
    def list_items(self, content_type: ContentType, limit: int | None = None) -> list[ContentItem]:
        """Return items of *content_type*, newest first, at most *limit*."""


class BehaviorStore(ABC):
    """Append-only log of :class:`~personalization.models.BehaviorEvent`."""

    @abstractmethod
    def append(self, event: BehaviorEvent) -> BehaviorEvent:
        """Durably append *event* and return it with its sequence number."""

    @abstractmethod
    def events_for_user(
        self,
        user_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[BehaviorEvent]:
        """Return the user's events in logical (timestamp, sequence) order.

        Args:
            user_id: The user whose events to fetch.
            since: Only events at or after this time.
            limit: Keep only the most recent *limit* events.
        """

    @abstractmethod
    def events_since(
        self, since: datetime, content_type: ContentType | None = None
    ) -> list[BehaviorEvent]:
        """Return all events at or after *since*, optionally for one content type."""

    @abstractmethod
    def user_ids(self) -> list[str]:
        """Return every user id with at least one event, sorted."""

    @abstractmethod
    def version(self, user_id: str) -> int:
        """Return a counter that changes whenever the user's log grows."""


def _event_order(event: BehaviorEvent) -> tuple[datetime, int]:
    return (event.timestamp, event.sequence)


class InMemoryContentStore(ContentStore):
    """Dictionary-backed content store.  All public methods are thread-safe."""

    def __init__(self, items: Iterable[ContentItem] = ()) -> None:
        self._lock = threading.RLock()
        self._items: dict[tuple[ContentType, str], ContentItem] = {}
        self.add_items(items)

    def add_items(self, items: Iterable[ContentItem]) -> None:
        with self._lock:
            for item in items:
                self._items[(item.content_type, item.content_id)] = item

    def get_items(self, ids: Iterable[str], content_type: ContentType) -> list[ContentItem]:
        with self._lock:
            found = []
            for content_id in ids:
                item = self._items.get((content_type, content_id))
                if item is not None:
                    found.append(item)
            return found

    def list_items(self, content_type: ContentType, limit: int | None = None) -> list[ContentItem]:
        with self._lock:
            items = [i for i in self._items.values() if i.content_type == content_type]
        items.sort(key=lambda i: (-i.created_at.timestamp(), i.content_id))
        return items if limit is None else items[:limit]


class InMemoryBehaviorStore(BehaviorStore):
    """List-backed behavior log.

    Each user's events are kept sorted by ``(timestamp, sequence)`` so
    late-arriving events slot into their logical position.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)
        self._by_user: dict[str, list[BehaviorEvent]] = {}
        self._all: list[BehaviorEvent] = []

    def append(self, event: BehaviorEvent) -> BehaviorEvent:
        with self._lock:
            stored = replace(event, sequence=next(self._sequence))
            user_events = self._by_user.get(stored.user_id, [])
            # Positions first: a failed comparison must leave both lists untouched.
            order = _event_order(stored)
            user_pos = bisect.bisect_right(user_events, order, key=_event_order)
            all_pos = bisect.bisect_right(self._all, order, key=_event_order)
            user_events.insert(user_pos, stored)
            self._by_user[stored.user_id] = user_events
            self._all.insert(all_pos, stored)
            return stored

    def events_for_user(
        self,
        user_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[BehaviorEvent]:
        with self._lock:
            events = list(self._by_user.get(user_id, ()))
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def events_since(
        self, since: datetime, content_type: ContentType | None = None
    ) -> list[BehaviorEvent]:
        with self._lock:
            start = bisect.bisect_left(self._all, (since, 0), key=_event_order)
            events = self._all[start:]
        if content_type is not None:
            events = [e for e in events if e.content_type == content_type]
        return events

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._by_user)

    def version(self, user_id: str) -> int:
        with self._lock:
            return len(self._by_user.get(user_id, ()))
