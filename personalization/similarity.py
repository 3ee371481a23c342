"""User-user similarity index over interest-profile topic vectors."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

import config
from personalization.profile import InterestProfileBuilder
from personalization.stores import BehaviorStore

logger = logging.getLogger(__name__)


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Cosine similarity of two sparse topic-weight maps.

    Keys missing from one map count as zero.  Returns 0.0 if either map
    is empty or all-zero.
    """
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    if len(b) < len(a):
        a, b = b, a
    dot = sum(weight * b.get(key, 0.0) for key, weight in a.items())
    return min(dot / (norm_a * norm_b), 1.0)


@dataclass
class _Snapshot:
    user_ids: list[str]
    topic_index: dict[str, int]
    matrix: np.ndarray  # (n_users, n_topics)
    norms: np.ndarray  # (n_users,)
    built_at: float


class SimilarityIndex:
    """Nearest-neighbour lookup over all users' topic-weight vectors.

    Topic maps are laid out as rows of a dense ``(n_users × n_topics)``
    matrix over the union of all topics, so profiles with different topic
    sets compare correctly.  The matrix is a snapshot rebuilt after
    *ttl_seconds*; lookups in between may be slightly stale.

    Users with an empty profile have similarity 0 to everyone and are
    excluded from results, both as targets and as neighbours.

    Args:
        profile_builder: Supplies interest profiles.
        behavior_store: Enumerates the known users.
        ttl_seconds: Snapshot lifetime.
    """

    def __init__(
        self,
        profile_builder: InterestProfileBuilder,
        behavior_store: BehaviorStore,
        ttl_seconds: float = config.SIMILARITY_CACHE_TTL_SECONDS,
    ) -> None:
        self._profiles = profile_builder
        self._behavior_store = behavior_store
        self._ttl = ttl_seconds
        self._lock = threading.RLock()
        self._snapshot: _Snapshot | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def nearest_users(self, user_id: str, k: int) -> list[tuple[str, float]]:
        """Return up to *k* ``(user_id, similarity)`` pairs, most similar first.

        Ties are broken by user id.  Fewer than *k* pairs are returned when
        fewer other users with a non-empty profile exist.

        Args:
            user_id: The target user.
            k: Maximum number of neighbours.
        """
        if k <= 0:
            return []

        target = self._profiles.build(user_id).topics
        if not target:
            return []
        target_norm = math.sqrt(sum(w * w for w in target.values()))
        if target_norm == 0.0:
            return []

        snapshot = self._current_snapshot()
        if not snapshot.user_ids:
            return []

        target_vec = np.zeros(len(snapshot.topic_index), dtype=np.float64)
        for topic, weight in target.items():
            idx = snapshot.topic_index.get(topic)
            if idx is not None:
                target_vec[idx] = weight

        valid = snapshot.norms > 0.0
        similarities = np.zeros(len(snapshot.user_ids), dtype=np.float64)
        if valid.any():
            similarities[valid] = (snapshot.matrix[valid] @ target_vec) / (
                snapshot.norms[valid] * target_norm
            )
        similarities = np.clip(similarities, 0.0, 1.0)

        ids = np.array(snapshot.user_ids)
        order = np.lexsort((ids, -similarities))
        results: list[tuple[str, float]] = []
        for i in order:
            if not valid[i] or snapshot.user_ids[i] == user_id:
                continue
            results.append((snapshot.user_ids[i], float(similarities[i])))
            if len(results) >= k:
                break
        return results

    def refresh(self) -> _Snapshot:
        """Rebuild the snapshot now, regardless of its age."""
        user_ids = self._behavior_store.user_ids()
        topic_maps = [self._profiles.build(uid).topics for uid in user_ids]

        topics = sorted({topic for weights in topic_maps for topic in weights})
        topic_index = {topic: i for i, topic in enumerate(topics)}
        matrix = np.zeros((len(user_ids), len(topics)), dtype=np.float64)
        for row, weights in enumerate(topic_maps):
            for topic, weight in weights.items():
                matrix[row, topic_index[topic]] = weight

        snapshot = _Snapshot(
            user_ids=user_ids,
            topic_index=topic_index,
            matrix=matrix,
            norms=np.linalg.norm(matrix, axis=1) if len(user_ids) else np.zeros(0),
            built_at=time.monotonic(),
        )
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Similarity index rebuilt: %d users, %d topics", len(user_ids), len(topics)
        )
        return snapshot

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _current_snapshot(self) -> _Snapshot:
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None or time.monotonic() - snapshot.built_at >= self._ttl:
            return self.refresh()
        return snapshot
