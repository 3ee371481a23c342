"""Collaborative filtering: content that similar users engaged with positively."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection
from datetime import datetime, timedelta

import config
from personalization.generators.base import CandidateGenerator, utcnow
from personalization.models import (
    BehaviorType,
    ContentType,
    Recommendation,
    RecommendationReason,
    RecommendationSource,
    ranking_key,
)
from personalization.profile import base_weight, decay_factor
from personalization.similarity import SimilarityIndex
from personalization.stores import BehaviorStore, ContentStore

logger = logging.getLogger(__name__)

_POSITIVE_SIGNALS = frozenset({BehaviorType.LIKE, BehaviorType.SAVE, BehaviorType.SHARE})


class CollaborativeGenerator(CandidateGenerator):
    """Recommends content liked, saved or shared by the most similar users.

    For each of the *neighbours* nearest users (by the
    :class:`~personalization.similarity.SimilarityIndex`), every positive
    event on unseen content adds::

        similarity × base_weight(behavior_type) × decay(age)

    to that content's raw score.  Raw scores are divided by the best raw
    score so the output lies in [0, 1]; the raw value is kept in
    ``metadata["rawScore"]``.

    **Cold start**: a user with an empty profile has no neighbours and
    gets an empty list.

    Args:
        similarity_index: Nearest-neighbour lookup over user profiles.
        behavior_store: Source of the neighbours' and the user's events.
        content_store: Hydrates creation times; unknown content is dropped.
        neighbours: How many similar users to consult.
        half_life: Recency decay applied to neighbour engagement.
        window: Only neighbour events inside this window count.
        clock: Returns the current UTC time.
    """

    source = RecommendationSource.COLLABORATIVE_FILTERING

    def __init__(
        self,
        similarity_index: SimilarityIndex,
        behavior_store: BehaviorStore,
        content_store: ContentStore,
        neighbours: int = config.COLLABORATIVE_NEIGHBOURS,
        half_life: timedelta = timedelta(hours=config.PROFILE_HALF_LIFE_HOURS),
        window: timedelta = timedelta(days=config.PROFILE_WINDOW_DAYS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._index = similarity_index
        self._behavior_store = behavior_store
        self._content_store = content_store
        self._neighbours = neighbours
        self._half_life = half_life
        self._window = window
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

        similar_users = [
            (uid, sim) for uid, sim in self._index.nearest_users(user_id, self._neighbours)
            if sim > 0.0
        ]
        if not similar_users:
            return []

        now = self._clock()
        seen = {
            e.content_id
            for e in self._behavior_store.events_for_user(user_id)
            if e.content_type == content_type
        }

        raw_scores: dict[str, float] = {}
        supporters: dict[str, set[str]] = {}
        for neighbour_id, similarity in similar_users:
            if self.cancelled(cancel):
                return []
            for event in self._behavior_store.events_for_user(neighbour_id, since=now - self._window):
                if (
                    event.content_type != content_type
                    or event.behavior_type not in _POSITIVE_SIGNALS
                    or event.content_id in seen
                    or event.content_id in exclude_ids
                ):
                    continue
                strength = base_weight(event.behavior_type) * decay_factor(
                    now - event.timestamp, self._half_life
                )
                raw_scores[event.content_id] = (
                    raw_scores.get(event.content_id, 0.0) + similarity * strength
                )
                supporters.setdefault(event.content_id, set()).add(neighbour_id)

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
                reason=RecommendationReason.FRIENDS_ENGAGED,
                source=self.source,
                score=raw_scores[item.content_id] / best if best > 0.0 else 0.0,
                created_at=item.created_at,
                metadata={
                    "rawScore": raw_scores[item.content_id],
                    "similarUserCount": len(supporters[item.content_id]),
                    "explanation": "People with interests like yours engaged with this.",
                },
            )
            for item in items
        ]
        recommendations.sort(key=ranking_key)
        return recommendations[:limit]
