"""Interest profile builder: decayed topic / type / engagement summaries."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import TypeVar

import config
from personalization.models import BehaviorEvent, BehaviorType, ContentItem, ContentType, InterestProfile
from personalization.stores import BehaviorStore, ContentStore

logger = logging.getLogger(__name__)

K = TypeVar("K")

BASE_WEIGHTS: dict[BehaviorType, float] = {
    BehaviorType(name): weight for name, weight in config.BEHAVIOR_BASE_WEIGHTS.items()
}

# Behaviours that say something about the creator, not just the item.
_CREATOR_SIGNALS = frozenset(
    {BehaviorType.LIKE, BehaviorType.SAVE, BehaviorType.FOLLOW, BehaviorType.SHARE}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decay_factor(age: timedelta, half_life: timedelta) -> float:
    """Return ``0.5 ** (age / half_life)``; future events count in full."""
    seconds = max(age.total_seconds(), 0.0)
    return 0.5 ** (seconds / half_life.total_seconds())


def base_weight(behavior_type: BehaviorType) -> float:
    return BASE_WEIGHTS.get(behavior_type, 0.0)


def normalize_for_display(weights: Mapping[K, float]) -> dict[K, float]:
    """Scale *weights* to percentages of the largest entry."""
    if not weights:
        return {}
    top = max(weights.values())
    if top <= 0.0:
        return {key: 0.0 for key in weights}
    return {key: round(100.0 * value / top, 2) for key, value in weights.items()}


class InterestProfileBuilder:
    """Derives an :class:`InterestProfile` from the behavior log.

    Every event in a bounded recent window contributes
    ``base_weight(behavior_type) * decay(age)`` to its topic, content type,
    behaviour type, creator and hour-of-day buckets.  Topics come from the
    content store; for ``topic`` content the content id *is* the topic.

    Profiles are a materialised cache, never a source of truth.  A cached
    profile is reused until the user's log grows or *cache_ttl_seconds*
    passes.  Concurrent rebuilds for the same user are harmless: the
    profile is a pure function of the log and the reference time.

    Args:
        behavior_store: Source of behavior events.
        content_store: Resolves content ids to topics and creators.
        half_life: Age at which an event counts half as much.
        window: Events older than this are ignored.
        max_events: At most this many of the user's most recent events
            are considered.
        cache_ttl_seconds: How long a cached profile stays fresh.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        behavior_store: BehaviorStore,
        content_store: ContentStore,
        half_life: timedelta = timedelta(hours=config.PROFILE_HALF_LIFE_HOURS),
        window: timedelta = timedelta(days=config.PROFILE_WINDOW_DAYS),
        max_events: int = config.PROFILE_MAX_EVENTS,
        cache_ttl_seconds: float = config.PROFILE_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._behavior_store = behavior_store
        self._content_store = content_store
        self._half_life = half_life
        self._window = window
        self._max_events = max_events
        self._cache_ttl = cache_ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        # user_id -> (log version, monotonic build time, profile)
        self._cache: dict[str, tuple[int, float, InterestProfile]] = {}

    @property
    def half_life(self) -> timedelta:
        return self._half_life

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def build(self, user_id: str) -> InterestProfile:
        """Return the user's profile, rebuilding it if the cache is stale.

        A user with no events gets an empty profile (cold start), never
        an error.
        """
        version = self._behavior_store.version(user_id)
        with self._lock:
            cached = self._cache.get(user_id)
        if cached is not None:
            cached_version, built_at, profile = cached
            if cached_version == version and time.monotonic() - built_at < self._cache_ttl:
                return profile

        profile = self.rebuild(user_id, now=self._clock())
        with self._lock:
            self._cache[user_id] = (version, time.monotonic(), profile)
        return profile

    def rebuild(self, user_id: str, now: datetime) -> InterestProfile:
        """Compute the profile from scratch, decayed relative to *now*."""
        events = self._behavior_store.events_for_user(
            user_id, since=now - self._window, limit=self._max_events
        )
        items = self._resolve_items(events)

        profile = InterestProfile(user_id=user_id, built_at=now)
        for event in events:
            weight = base_weight(event.behavior_type) * decay_factor(
                now - event.timestamp, self._half_life
            )
            _add(profile.content_type_preference, event.content_type, weight)
            _add(profile.engagement_patterns, event.behavior_type, weight)
            _add(profile.time_patterns, event.timestamp.astimezone(timezone.utc).hour, weight)

            item = items.get((event.content_type, event.content_id))
            if event.content_type == ContentType.TOPIC:
                topics: tuple[str, ...] = (event.content_id,)
            elif item is not None:
                topics = tuple(item.topics)
            else:
                topics = ()
            for topic in topics:
                _add(profile.topics, topic, weight)
                # events arrive oldest first
                profile.topic_last_engagement[topic] = event.timestamp

            if event.behavior_type in _CREATOR_SIGNALS:
                if event.content_type == ContentType.USER:
                    _add(profile.creators, event.content_id, weight)
                elif item is not None and item.creator_id:
                    _add(profile.creators, item.creator_id, weight)

        profile.event_count = len(events)
        logger.debug(
            "Built profile for user %r from %d events (%d topics)",
            user_id,
            len(events),
            len(profile.topics),
        )
        return profile

    def invalidate(self, user_id: str) -> None:
        """Drop any cached profile for *user_id*."""
        with self._lock:
            self._cache.pop(user_id, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_items(
        self, events: list[BehaviorEvent]
    ) -> dict[tuple[ContentType, str], ContentItem]:
        ids_by_type: dict[ContentType, list[str]] = {}
        for event in events:
            if event.content_type != ContentType.TOPIC:
                ids_by_type.setdefault(event.content_type, []).append(event.content_id)

        items: dict[tuple[ContentType, str], ContentItem] = {}
        for content_type, ids in ids_by_type.items():
            for item in self._content_store.get_items(dict.fromkeys(ids), content_type):
                items[(content_type, item.content_id)] = item
        return items


def _add(weights: dict[K, float], key: K, delta: float) -> None:
    weights[key] = weights.get(key, 0.0) + delta
