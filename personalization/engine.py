"""Personalization engine: one entry point for every ranking operation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from personalization.behavior_log import BehaviorLog, coerce_content_type
from personalization.composer import FeedComposer, FeedResult
from personalization.errors import ValidationError
from personalization.generators.base import CandidateGenerator
from personalization.models import (
    BehaviorEvent,
    BehaviorType,
    ContentItem,
    ContentType,
    InterestProfile,
    Recommendation,
    RecommendationReason,
    RecommendationSource,
)
from personalization.profile import InterestProfileBuilder
from personalization.similarity import SimilarityIndex
from personalization.stores import ContentStore

logger = logging.getLogger(__name__)


class PersonalizationEngine:
    """Facade over the behavior log, profiles, similarity index and composer.

    Args:
        behavior_log: Where interaction events are recorded.
        profile_builder: Builds interest profiles.
        similarity_index: Finds similar users.
        composer: Composes the personalized feed.
        content_store: Used for the chronological fallback feed.
    """

    def __init__(
        self,
        behavior_log: BehaviorLog,
        profile_builder: InterestProfileBuilder,
        similarity_index: SimilarityIndex,
        composer: FeedComposer,
        content_store: ContentStore,
    ) -> None:
        self._behavior_log = behavior_log
        self._profiles = profile_builder
        self._similarity = similarity_index
        self._composer = composer
        self._content_store = content_store
        self._by_source: dict[RecommendationSource, CandidateGenerator] = {
            g.source: g for g in composer.generators
        }

    @property
    def behavior_log(self) -> BehaviorLog:
        return self._behavior_log

    def log_user_behavior(
        self,
        user_id: str,
        behavior_type: BehaviorType | str,
        content_id: str,
        content_type: ContentType | str,
        metadata: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> BehaviorEvent:
        """Record one interaction.  See :meth:`BehaviorLog.log_behavior`."""
        return self._behavior_log.log_behavior(
            user_id, behavior_type, content_id, content_type, metadata, timestamp
        )

    def get_user_interest_profile(self, user_id: str) -> InterestProfile:
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        return self._profiles.build(user_id)

    def generate_personalized_feed(
        self,
        user_id: str,
        content_type: ContentType | str = ContentType.POST,
        limit: int = 20,
        cancel: threading.Event | None = None,
    ) -> FeedResult:
        return self._composer.compose_detailed(
            user_id, coerce_content_type(content_type), limit, cancel
        )

    def recommendations_by_source(
        self,
        user_id: str,
        source: RecommendationSource | str,
        content_type: ContentType | str = ContentType.POST,
        limit: int = 10,
    ) -> list[Recommendation]:
        """Return recommendations from a single source.

        ``interest_based`` is only available for ``user`` content, where it
        means :meth:`find_similar_users`.

        Raises:
            ValidationError: On bad arguments or a source with no generator.
        """
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit!r}")
        try:
            source = RecommendationSource(source)
        except ValueError:
            raise ValidationError(f"Unknown recommendation source {source!r}") from None
        content_type = coerce_content_type(content_type)

        if source == RecommendationSource.INTEREST_BASED:
            if content_type != ContentType.USER:
                raise ValidationError(
                    "Interest-based recommendations are only available for users"
                )
            return self.find_similar_users(user_id, limit)

        generator = self._by_source.get(source)
        if generator is None:
            raise ValidationError(f"Unsupported recommendation source {source.value!r}")
        return generator.generate(user_id, content_type, limit)

    def find_similar_users(self, user_id: str, limit: int = 10) -> list[Recommendation]:
        """Return the most similar users as ``user`` recommendations."""
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        target = self._profiles.build(user_id).topics
        results = []
        for other_id, similarity in self._similarity.nearest_users(user_id, limit):
            if similarity <= 0.0:
                continue
            other = self._profiles.build(other_id).topics
            matching = sorted(set(target) & set(other))
            results.append(
                Recommendation(
                    content_id=other_id,
                    content_type=ContentType.USER,
                    reason=RecommendationReason.SIMILAR_USERS,
                    source=RecommendationSource.INTEREST_BASED,
                    score=similarity,
                    metadata={"matchingTopics": matching, "similarity": similarity},
                )
            )
        return results

    def chronological_feed(
        self, content_type: ContentType | str = ContentType.POST, limit: int = 20
    ) -> list[ContentItem]:
        """Newest items first; the unpersonalized fallback feed."""
        return self._content_store.list_items(coerce_content_type(content_type), limit=limit)

    def shutdown(self) -> None:
        self._composer.shutdown()
