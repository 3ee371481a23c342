"""Core domain types shared across all personalization modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class BehaviorType(str, Enum):
    """Categories of user interaction recorded in the behavior log."""

    VIEW = "view"
    LIKE = "like"
    COMMENT = "comment"
    SHARE = "share"
    SAVE = "save"
    CLICK = "click"
    FOLLOW = "follow"
    DWELL_TIME = "dwell_time"
    SEARCH = "search"


class ContentType(str, Enum):
    """Kinds of content that can be logged against and recommended."""

    POST = "post"
    REEL = "reel"
    GROUP = "group"
    EVENT = "event"
    USER = "user"
    TOPIC = "topic"
    STORY = "story"


class RecommendationSource(str, Enum):
    """The candidate generator (or signal) that produced a recommendation."""

    COLLABORATIVE_FILTERING = "collaborative_filtering"
    CONTENT_BASED = "content_based"
    TRENDING = "trending"
    SOCIAL_GRAPH = "social_graph"
    AI_PERSONALIZED = "ai_personalized"
    INTEREST_BASED = "interest_based"
    LOCATION_BASED = "location_based"


class RecommendationReason(str, Enum):
    """User-facing explanation category attached to a recommendation."""

    SIMILAR_CONTENT = "similar_content"
    FRIENDS_ENGAGED = "friends_engaged"
    TRENDING_NOW = "trending_now"
    BASED_ON_INTERESTS = "based_on_interests"
    BASED_ON_HISTORY = "based_on_history"
    BASED_ON_LOCATION = "based_on_location"
    SIMILAR_USERS = "similar_users"
    COMPLEMENTARY_CONTENT = "complementary_content"
    NEW_BUT_RELEVANT = "new_but_relevant"


@dataclass(frozen=True)
class BehaviorEvent:
    """A single recorded user interaction.  Immutable once written.

    Attributes:
        user_id: The acting user.
        behavior_type: What the user did.
        content_id: The content acted upon.
        content_type: The kind of content acted upon.
        timestamp: When the interaction happened (UTC).  Processing order
            is by this value, not by arrival.
        metadata: Opaque key-value context (dwell duration, search query...).
        sequence: Insertion counter assigned by the behavior store; breaks
            ties between events with equal timestamps.
    """

    user_id: str
    behavior_type: BehaviorType
    content_id: str
    content_type: ContentType
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0


@dataclass
class ContentItem:
    """The slice of a content record the ranking core needs.

    Attributes:
        content_id: Unique identifier within its content type.
        content_type: The kind of content.
        created_at: Creation time, used for recency tie-breaks.
        topics: Topic / category labels.  Treated as a binary topic vector.
        creator_id: Author of the content, if any.
    """

    content_id: str
    content_type: ContentType
    created_at: datetime
    topics: list[str] = field(default_factory=list)
    creator_id: str | None = None


@dataclass
class InterestProfile:
    """Decayed summary of a user's preferences, derived from the behavior log.

    Weights are raw, non-negative, recency-decayed sums.  They express
    relative affinity and are not normalised; use
    :func:`~personalization.profile.normalize_for_display` for percentages.

    Attributes:
        user_id: The profile owner.
        topics: Weight per topic label.
        topic_last_engagement: Timestamp of the most recent event per topic.
        content_type_preference: Weight per content type.
        engagement_patterns: Weight per behavior type.
        creators: Weight per content creator.
        time_patterns: Weight per UTC hour of day (0-23).
        event_count: Number of events that contributed.
        built_at: The reference time the decay was computed against.
    """

    user_id: str
    topics: dict[str, float] = field(default_factory=dict)
    topic_last_engagement: dict[str, datetime] = field(default_factory=dict)
    content_type_preference: dict[ContentType, float] = field(default_factory=dict)
    engagement_patterns: dict[BehaviorType, float] = field(default_factory=dict)
    creators: dict[str, float] = field(default_factory=dict)
    time_patterns: dict[int, float] = field(default_factory=dict)
    event_count: int = 0
    built_at: datetime | None = None

    def is_cold_start(self) -> bool:
        """``True`` if no behavior contributed to this profile."""
        return self.event_count == 0


@dataclass
class Recommendation:
    """A single ranked candidate.  Transient; produced fresh per request.

    Attributes:
        content_id: The recommended content.
        content_type: Its content type.
        reason: Why it is shown.
        source: The generator whose score it carries.
        score: Relevance in [0, 1]; higher is better.
        created_at: Content creation time, the ranking tie-break.
        metadata: Extra context (``explanation``, ``matchingTopics``...).
    """

    content_id: str
    content_type: ContentType
    reason: RecommendationReason
    source: RecommendationSource
    score: float
    created_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def ranking_key(rec: Recommendation) -> tuple[float, float, str]:
    """Sort key: score descending, then newer content first, then id."""
    recency = rec.created_at.timestamp() if rec.created_at is not None else float("-inf")
    return (-rec.score, -recency, rec.content_id)
