"""gRPC servicer: the entry point for all inbound calls from the API layer.

Requests and responses are ``google.protobuf.Struct`` documents with
camelCase keys, so the service is registered through a generic handler
rather than generated stubs.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import grpc
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct
from google.protobuf.timestamp_pb2 import Timestamp

from personalization.engine import PersonalizationEngine
from personalization.errors import UpstreamUnavailable, ValidationError
from personalization.models import ContentItem, InterestProfile, Recommendation
from personalization.profile import normalize_for_display

logger = logging.getLogger(__name__)

SERVICE_NAME = "personalization.FeedService"

_METHODS = (
    "LogBehavior",
    "GetUserInterests",
    "GetPersonalizedFeed",
    "GetRecommendationsBySource",
    "FindSimilarUsers",
)

_FEED_WARN_THRESHOLD_MS = 400
_MAX_LIMIT = 50


class FeedServicer:
    """Implements the ``personalization.FeedService`` unary methods.

    Register it with :func:`add_FeedServicer_to_server`.

    Args:
        engine: The :class:`~personalization.engine.PersonalizationEngine`.
    """

    def __init__(self, engine: PersonalizationEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Behavior logging
    # ------------------------------------------------------------------

    def LogBehavior(self, request: Struct, context: Any) -> Struct:
        """Record one interaction event.

        Returns:
            ``{success: bool}``.
        """
        payload = _to_dict(request)
        try:
            if isinstance(payload.get("timestamp"), str):
                payload["timestamp"] = _parse_timestamp(payload["timestamp"])
            self._engine.behavior_log.record_payload(payload)
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return _to_struct({"success": False})
        except Exception:
            logger.exception(
                "Error logging behavior for user=%r content=%r",
                payload.get("userId"),
                payload.get("contentId"),
            )
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Failed to log user behavior.")
            return _to_struct({"success": False})
        return _to_struct({"success": True})

    # ------------------------------------------------------------------
    # Profiles and similar users
    # ------------------------------------------------------------------

    def GetUserInterests(self, request: Struct, context: Any) -> Struct:
        payload = _to_dict(request)
        try:
            profile = self._engine.get_user_interest_profile(str(payload.get("userId") or ""))
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()
        except Exception:
            logger.exception("Error building interest profile for user=%r", payload.get("userId"))
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Failed to get user interest profile.")
            return Struct()
        return _to_struct(_profile_to_dict(profile))

    def FindSimilarUsers(self, request: Struct, context: Any) -> Struct:
        payload = _to_dict(request)
        try:
            limit = _parse_limit(payload.get("limit"), default=10)
            recs = self._engine.find_similar_users(str(payload.get("userId") or ""), limit)
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()
        except Exception:
            logger.exception("Error finding similar users for user=%r", payload.get("userId"))
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Failed to find similar users.")
            return Struct()
        return _to_struct({"items": [_recommendation_to_dict(r) for r in recs]})

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def GetPersonalizedFeed(self, request: Struct, context: Any) -> Struct:
        """Return the composed feed, or the chronological feed if composition fails.

        Returns:
            ``{items, degraded}``, plus ``fallback: "chronological"`` when the
            personalized feed could not be produced.
        """
        payload = _to_dict(request)
        user_id = str(payload.get("userId") or "")
        content_type = payload.get("contentType") or "post"
        try:
            limit = _parse_limit(payload.get("limit"), default=20)
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()

        # The client hanging up stops in-flight generator work.
        cancel = threading.Event()
        context.add_callback(cancel.set)

        start_ms = time.monotonic() * 1000
        try:
            result = self._engine.generate_personalized_feed(user_id, content_type, limit, cancel)
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()
        except UpstreamUnavailable as exc:
            logger.warning("Personalized feed unavailable for user=%r: %s", user_id, exc)
            return self._chronological_fallback(content_type, limit, context)
        except Exception:
            logger.exception("Unexpected error generating feed for user=%r", user_id)
            return self._chronological_fallback(content_type, limit, context)
        finally:
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > _FEED_WARN_THRESHOLD_MS:
                logger.warning(
                    "GetPersonalizedFeed for user=%r took %.1fms", user_id, elapsed_ms
                )
            else:
                logger.debug("GetPersonalizedFeed for user=%r took %.1fms", user_id, elapsed_ms)

        return _to_struct(
            {
                "items": [_recommendation_to_dict(r) for r in result.items],
                "degraded": [
                    {"source": d.source.value, "kind": d.kind} for d in result.degraded
                ],
            }
        )

    def GetRecommendationsBySource(self, request: Struct, context: Any) -> Struct:
        payload = _to_dict(request)
        user_id = str(payload.get("userId") or "")
        try:
            limit = _parse_limit(payload.get("limit"), default=10)
            recs = self._engine.recommendations_by_source(
                user_id,
                payload.get("source") or "",
                payload.get("contentType") or "post",
                limit,
            )
        except ValidationError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()
        except Exception:
            logger.exception(
                "Error getting %r recommendations for user=%r", payload.get("source"), user_id
            )
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Failed to get recommendations.")
            return Struct()
        return _to_struct({"items": [_recommendation_to_dict(r) for r in recs]})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _chronological_fallback(self, content_type: str, limit: int, context: Any) -> Struct:
        try:
            items = self._engine.chronological_feed(content_type, limit)
        except Exception:
            logger.exception("Chronological fallback failed for %r", content_type)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Failed to generate personalized feed.")
            return Struct()
        logger.warning("Serving chronological %s feed (%d items)", content_type, len(items))
        return _to_struct(
            {
                "items": [_item_to_dict(i) for i in items],
                "degraded": [],
                "fallback": "chronological",
            }
        )


def add_FeedServicer_to_server(servicer: FeedServicer, server: grpc.Server) -> None:
    """Register every ``FeedService`` method of *servicer* on *server*."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in _METHODS
    }
    server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),))


# ---------------------------------------------------------------------------
# Struct / timestamp helpers
# ---------------------------------------------------------------------------


def _to_dict(message: Struct) -> dict[str, Any]:
    return json_format.MessageToDict(message)


def _to_struct(payload: Mapping[str, Any]) -> Struct:
    struct = Struct()
    struct.update(payload)
    return struct


def _parse_limit(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"limit must be an integer, got {value!r}") from None
    if limit != value or not 1 <= limit <= _MAX_LIMIT:
        raise ValidationError(f"limit must be an integer in [1, {_MAX_LIMIT}], got {value!r}")
    return limit


def _parse_timestamp(value: str) -> datetime:
    """Convert an RFC 3339 string to a UTC-aware ``datetime``.

    Raises:
        ValidationError: If *value* is not a valid RFC 3339 timestamp.
    """
    ts = Timestamp()
    try:
        ts.FromJsonString(value)
    except ValueError:
        raise ValidationError(f"Invalid timestamp {value!r}") from None
    return datetime.fromtimestamp(ts.seconds + ts.nanos / 1e9, tz=timezone.utc)


def _format_timestamp(dt: datetime) -> str:
    """Render *dt* as RFC 3339; naive datetimes are assumed UTC."""
    ts = Timestamp()
    ts.FromDatetime(dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc))
    return ts.ToJsonString()


def _recommendation_to_dict(rec: Recommendation) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": rec.content_id,
        "contentType": rec.content_type.value,
        "score": rec.score,
        "reason": rec.reason.value,
        "source": rec.source.value,
        "metadata": dict(rec.metadata),
    }
    if rec.created_at is not None:
        out["createdAt"] = _format_timestamp(rec.created_at)
    return out


def _item_to_dict(item: ContentItem) -> dict[str, Any]:
    return {
        "id": item.content_id,
        "contentType": item.content_type.value,
        "score": 0.0,
        "createdAt": _format_timestamp(item.created_at),
    }


def _profile_to_dict(profile: InterestProfile) -> dict[str, Any]:
    out: dict[str, Any] = {
        "userId": profile.user_id,
        "coldStart": profile.is_cold_start(),
        "eventCount": profile.event_count,
        "topics": dict(profile.topics),
        "topicsDisplay": normalize_for_display(profile.topics),
        "topicLastEngagement": {
            topic: _format_timestamp(ts) for topic, ts in profile.topic_last_engagement.items()
        },
        "contentTypes": {ct.value: w for ct, w in profile.content_type_preference.items()},
        "engagementPatterns": {bt.value: w for bt, w in profile.engagement_patterns.items()},
        "creators": dict(profile.creators),
        "timePatterns": {f"{hour:02d}": w for hour, w in sorted(profile.time_patterns.items())},
    }
    if profile.built_at is not None:
        out["builtAt"] = _format_timestamp(profile.built_at)
    return out
