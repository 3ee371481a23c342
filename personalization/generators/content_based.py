"""Content-based generator: topic similarity between items and the user's profile."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection
from datetime import datetime, timedelta

import numpy as np

import config
from personalization.generators.base import CandidateGenerator, utcnow
from personalization.models import (
    ContentItem,
    ContentType,
    Recommendation,
    RecommendationReason,
    RecommendationSource,
    ranking_key,
)
from personalization.profile import InterestProfileBuilder
from personalization.stores import BehaviorStore, ContentStore

logger = logging.getLogger(__name__)


class ContentBasedGenerator(CandidateGenerator):
    """Recommends unseen items whose topics best match the user's interests.

    Scores are the cosine similarity between the user's decayed topic
    weights and each candidate's binary topic vector, over the union of
    both vocabularies.  Items the user interacted with inside
    *seen_window*, items the user created, and items with no topic
    overlap are skipped.

    **Cold start**: a profile with no topics yields an empty list.

    Args:
        profile_builder: Supplies the user's interest profile.
        behavior_store: Used to find recently seen items.
        content_store: Supplies the candidate pool.
        seen_window: Interactions inside this window exclude an item.
        candidate_pool: Number of newest items considered.
        clock: Returns the current UTC time.
    """

    source = RecommendationSource.CONTENT_BASED

    def __init__(
        self,
        profile_builder: InterestProfileBuilder,
        behavior_store: BehaviorStore,
        content_store: ContentStore,
        seen_window: timedelta = timedelta(days=config.SEEN_WINDOW_DAYS),
        candidate_pool: int = config.CANDIDATE_POOL_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._profiles = profile_builder
        self._behavior_store = behavior_store
        self._content_store = content_store
        self._seen_window = seen_window
        self._candidate_pool = candidate_pool
        self._clock = clock

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

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

        profile = self._profiles.build(user_id)
        if not profile.topics:
            return []

        seen = self._recently_seen(user_id, content_type)
        candidates = [
            item
            for item in self._content_store.list_items(content_type, limit=self._candidate_pool)
            if item.content_id not in seen
            and item.content_id not in exclude_ids
            and item.creator_id != user_id
            and item.topics
        ]
        if not candidates or self.cancelled(cancel):
            return []

        scores = self._score(profile.topics, candidates)
        recommendations = []
        for item, score in zip(candidates, scores):
            if score <= 0.0:
                continue
            matching = sorted(t for t in set(item.topics) if t in profile.topics)
            recommendations.append(
                Recommendation(
                    content_id=item.content_id,
                    content_type=content_type,
                    reason=RecommendationReason.BASED_ON_INTERESTS,
                    source=self.source,
                    score=float(score),
                    created_at=item.created_at,
                    metadata={
                        "matchingTopics": matching,
                        "explanation": f"Matches your interest in {', '.join(matching)}.",
                    },
                )
            )

        recommendations.sort(key=ranking_key)
        return recommendations[:limit]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _recently_seen(self, user_id: str, content_type: ContentType) -> set[str]:
        since = self._clock() - self._seen_window
        return {
            e.content_id
            for e in self._behavior_store.events_for_user(user_id, since=since)
            if e.content_type == content_type
        }

    @staticmethod
    def _score(user_topics: dict[str, float], candidates: list[ContentItem]) -> np.ndarray:
        """Cosine similarity of each candidate's topic vector to the user's."""
        vocabulary = sorted(set(user_topics).union(*(item.topics for item in candidates)))
        index = {topic: i for i, topic in enumerate(vocabulary)}

        user_vec = np.zeros(len(vocabulary), dtype=np.float64)
        for topic, weight in user_topics.items():
            user_vec[index[topic]] = weight

        item_matrix = np.zeros((len(candidates), len(vocabulary)), dtype=np.float64)
        for row, item in enumerate(candidates):
            for topic in item.topics:
                item_matrix[row, index[topic]] = 1.0

        user_norm = np.linalg.norm(user_vec)
        item_norms = np.linalg.norm(item_matrix, axis=1)
        if user_norm == 0.0:
            return np.zeros(len(candidates))
        scores = np.zeros(len(candidates), dtype=np.float64)
        valid = item_norms > 0.0
        scores[valid] = (item_matrix[valid] @ user_vec) / (item_norms[valid] * user_norm)
        return np.clip(scores, 0.0, 1.0)
