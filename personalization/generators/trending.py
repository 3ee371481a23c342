"""Trending generator: time-decayed global engagement within a recent window."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection
from datetime import datetime, timedelta

import config
from personalization.errors import ValidationError
from personalization.generators.base import CandidateGenerator, utcnow
from personalization.models import (
    BehaviorType,
    ContentType,
    Recommendation,
    RecommendationReason,
    RecommendationSource,
    ranking_key,
)
from personalization.profile import decay_factor
from personalization.stores import BehaviorStore, ContentStore

logger = logging.getLogger(__name__)

# views + reactions×2 + comments×3 + shares×5
ENGAGEMENT_WEIGHTS: dict[BehaviorType, float] = {
    BehaviorType.VIEW: 1.0,
    BehaviorType.LIKE: 2.0,
    BehaviorType.SAVE: 2.0,
    BehaviorType.COMMENT: 3.0,
    BehaviorType.SHARE: 5.0,
}

TIMEFRAMES: dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


class TrendingGenerator(CandidateGenerator):
    """Ranks content by decayed engagement from all users, ignoring the profile.

    Each event inside the timeframe contributes
    ``ENGAGEMENT_WEIGHTS[behavior_type] × decay(age)``.  Scores are divided
    by the best raw score so the output lies in [0, 1].

    This is the fallback generator: it needs no data about the requesting
    user.  If nobody engaged with the content type inside the window it
    returns an empty list.

    Args:
        behavior_store: Source of global engagement.
        content_store: Hydrates creation times; unknown content is dropped.
        timeframe: ``"day"``, ``"week"`` or ``"month"``.
        half_life: Recency decay inside the window.
        exclude_seen: Skip content the requesting user already interacted with.
        clock: Returns the current UTC time.

    Raises:
        ValidationError: If *timeframe* is not recognised.
    """

    source = RecommendationSource.TRENDING

    def __init__(
        self,
        behavior_store: BehaviorStore,
        content_store: ContentStore,
        timeframe: str = config.TRENDING_TIMEFRAME,
        half_life: timedelta = timedelta(hours=config.TRENDING_HALF_LIFE_HOURS),
        exclude_seen: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if timeframe not in TIMEFRAMES:
            raise ValidationError(
                f"timeframe must be one of {sorted(TIMEFRAMES)}, got {timeframe!r}"
            )
        self._behavior_store = behavior_store
        self._content_store = content_store
        self._timeframe = timeframe
        self._half_life = half_life
        self._exclude_seen = exclude_seen
        self._clock = clock

    def generate(
        self,
        user_id: str,
        content_type: ContentType,
        limit: int,
        exclude_ids: Collection[str] = frozenset(),
        cancel: threading.Event | None = None,
    ) -> list[Recommendation]:
        if limit <= 0:
            return []

        now = self._clock()
        events = self._behavior_store.events_since(
            now - TIMEFRAMES[self._timeframe], content_type=content_type
        )
        if not events or self.cancelled(cancel):
            return []

        seen: set[str] = set()
        if self._exclude_seen and user_id:
            seen = {
                e.content_id
                for e in self._behavior_store.events_for_user(user_id)
                if e.content_type == content_type
            }

        raw_scores: dict[str, float] = {}
        for event in events:
            weight = ENGAGEMENT_WEIGHTS.get(event.behavior_type)
            if not weight or event.content_id in seen or event.content_id in exclude_ids:
                continue
            raw_scores[event.content_id] = raw_scores.get(event.content_id, 0.0) + (
                weight * decay_factor(now - event.timestamp, self._half_life)
            )
        if not raw_scores:
            return []

        items = self._content_store.get_items(raw_scores, content_type)
        if not items:
            return []
        best = max(raw_scores[item.content_id] for item in items)

        recommendations = [
            Recommendation(
                content_id=item.content_id,
                content_type=content_type,
                reason=RecommendationReason.TRENDING_NOW,
                source=self.source,
                score=raw_scores[item.content_id] / best,
                created_at=item.created_at,
                metadata={
                    "rawScore": raw_scores[item.content_id],
                    "timeframe": self._timeframe,
                    "explanation": f"Popular this {self._timeframe}.",
                },
            )
            for item in items
        ]
        recommendations.sort(key=ranking_key)
        return recommendations[:limit]
