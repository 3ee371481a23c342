"""Behavior log: validates and appends user interaction events."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from prometheus_client import Counter

from personalization.errors import ValidationError
from personalization.models import BehaviorEvent, BehaviorType, ContentType
from personalization.stores import BehaviorStore

logger = logging.getLogger(__name__)

EVENTS_RECORDED = Counter(
    "behavior_events_recorded_total",
    "Behavior events appended to the log",
    ["behavior_type"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    """Naive datetimes are assumed to be UTC."""
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def coerce_behavior_type(value: BehaviorType | str) -> BehaviorType:
    """Return *value* as a :class:`BehaviorType`.

    Raises:
        ValidationError: If *value* is not a recognised behavior type.
    """
    try:
        return BehaviorType(value)
    except ValueError:
        raise ValidationError(f"Unknown behavior type {value!r}") from None


def coerce_content_type(value: ContentType | str) -> ContentType:
    """Return *value* as a :class:`ContentType`.

    Raises:
        ValidationError: If *value* is not a recognised content type.
    """
    try:
        return ContentType(value)
    except ValueError:
        raise ValidationError(f"Unknown content type {value!r}") from None


class BehaviorLog:
    """Append-only behavior log in front of a :class:`BehaviorStore`.

    There is no deduplication: repeated identical events are all recorded
    and downstream consumers decide how to aggregate them.

    Args:
        store: The backing :class:`~personalization.stores.BehaviorStore`.
        clock: Returns the current UTC time; used when an event carries
            no timestamp.
    """

    def __init__(self, store: BehaviorStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(self, event: BehaviorEvent) -> BehaviorEvent:
        """Validate *event* and append it to the log.

        Args:
            event: The event to record.

        Returns:
            The stored event, carrying its insertion sequence number.

        Raises:
            ValidationError: If an id is missing or an enum value is unknown.
            UpstreamUnavailable: If the store cannot be reached.
        """
        if not event.user_id:
            raise ValidationError("user_id must be non-empty")
        if not event.content_id:
            raise ValidationError("content_id must be non-empty")
        if not isinstance(event.behavior_type, BehaviorType):
            raise ValidationError(f"Unknown behavior type {event.behavior_type!r}")
        if not isinstance(event.content_type, ContentType):
            raise ValidationError(f"Unknown content type {event.content_type!r}")

        if event.timestamp.tzinfo is None:
            event = replace(event, timestamp=_as_utc(event.timestamp))

        stored = self._store.append(event)
        EVENTS_RECORDED.labels(behavior_type=stored.behavior_type.value).inc()
        logger.debug(
            "Recorded %s on %s %r for user %r",
            stored.behavior_type.value,
            stored.content_type.value,
            stored.content_id,
            stored.user_id,
        )
        return stored

    def log_behavior(
        self,
        user_id: str,
        behavior_type: BehaviorType | str,
        content_id: str,
        content_type: ContentType | str,
        metadata: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> BehaviorEvent:
        """Build an event from loose arguments and :meth:`record` it."""
        event = BehaviorEvent(
            user_id=user_id,
            behavior_type=coerce_behavior_type(behavior_type),
            content_id=content_id,
            content_type=coerce_content_type(content_type),
            timestamp=_as_utc(timestamp) if timestamp is not None else self._clock(),
            metadata=dict(metadata or {}),
        )
        return self.record(event)

    def record_payload(self, payload: Mapping[str, Any]) -> BehaviorEvent:
        """Record an event from a camelCase JSON-style mapping.

        Recognised keys: ``userId``, ``behaviorType``, ``contentId``,
        ``contentType``, ``timestamp`` (``datetime`` or ISO 8601 string),
        ``duration`` and ``metadata``.  ``duration`` is merged into metadata.
        """
        metadata = dict(payload.get("metadata") or {})
        if payload.get("duration") is not None:
            metadata["duration"] = payload["duration"]

        timestamp = payload.get("timestamp")
        if isinstance(timestamp, str):
            try:
                timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
            except ValueError:
                raise ValidationError(f"Invalid timestamp {timestamp!r}") from None

        return self.log_behavior(
            user_id=str(payload.get("userId") or ""),
            behavior_type=payload.get("behaviorType", ""),
            content_id=str(payload.get("contentId") or ""),
            content_type=payload.get("contentType", ""),
            metadata=metadata,
            timestamp=timestamp,
        )
