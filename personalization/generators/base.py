"""Abstract base class for all candidate generators."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime, timezone

from personalization.models import ContentType, Recommendation, RecommendationSource


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CandidateGenerator(ABC):
    """Abstract base class for all candidate generators.

    Each generator proposes ranked content ids from one signal source
    (content similarity, similar users, global popularity...).  The
    :class:`~personalization.composer.FeedComposer` runs generators
    concurrently and merges their output.

    Generators never fail just because they have nothing to say: no data
    means an empty list.  Store connectivity problems propagate as
    :class:`~personalization.errors.UpstreamUnavailable`.
    """

    #: The source tag carried by every recommendation this generator emits.
    source: RecommendationSource

    @abstractmethod
    def generate(
        self,
        user_id: str,
        content_type: ContentType,
        limit: int,
        exclude_ids: Collection[str] = frozenset(),
        cancel: threading.Event | None = None,
    ) -> list[Recommendation]:
        """Return up to *limit* recommendations for *user_id*.

        Args:
            user_id: The requesting user.
            content_type: The kind of content to recommend.
            limit: Maximum number of recommendations to return.
            exclude_ids: Content ids that must not be returned.
            cancel: Set by the caller when the result is no longer wanted.
                Generators check it between units of work and return early.

        Returns:
            List of up to *limit* recommendations, ordered by
            :func:`~personalization.models.ranking_key`.
        """

    @staticmethod
    def cancelled(cancel: threading.Event | None) -> bool:
        return cancel is not None and cancel.is_set()
