"""AI-personalized generator: asks a text-generation model to pick content."""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Collection
from typing import Any

import config
from personalization.generators.base import CandidateGenerator
from personalization.models import (
    ContentItem,
    ContentType,
    InterestProfile,
    Recommendation,
    RecommendationReason,
    RecommendationSource,
    ranking_key,
)
from personalization.profile import InterestProfileBuilder
from personalization.stores import BehaviorStore, ContentStore

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[\s*\{.*\}\s*\]", re.DOTALL)

# Reasons the model is allowed to choose from.
_ALLOWED_REASONS = (
    RecommendationReason.SIMILAR_CONTENT,
    RecommendationReason.BASED_ON_INTERESTS,
    RecommendationReason.BASED_ON_HISTORY,
    RecommendationReason.TRENDING_NOW,
    RecommendationReason.COMPLEMENTARY_CONTENT,
    RecommendationReason.NEW_BUT_RELEVANT,
)

_PROMPT_TEMPLATE = """\
You are a recommendation system. Based on the user profile and the available
content, recommend the most relevant content items for this user.

USER PROFILE:
{profile}

AVAILABLE CONTENT:
{content}

Return a JSON array with at most {limit} recommendations, each containing:
- id (string): the content id, taken from AVAILABLE CONTENT
- score (number between 0 and 1): relevance
- reason (string): one of {reasons}
- explanation (string): one sentence on why this item fits the user
"""


class AIPersonalizedGenerator(CandidateGenerator):
    """Delegates ranking of a recent candidate pool to a language model.

    The prompt carries the user's top interests, preferred content types,
    engagement patterns and recent activity, plus the newest items of the
    requested content type (excluding the user's own).  The reply must
    contain a JSON array; ids outside the candidate pool are discarded,
    scores are clamped to [0, 1] and unknown reasons become
    ``similar_content``.

    An unparseable reply is logged and yields an empty list.

    Args:
        client: Any object with a ``generate_content(prompt: str) -> str``
            method wrapping the model API.
        profile_builder: Supplies the user's interest profile.
        behavior_store: Supplies recent activity.
        content_store: Supplies the candidate pool.
        candidate_pool: Number of newest items offered to the model.
        recent_activity: Number of the user's latest events in the prompt.
    """

    source = RecommendationSource.AI_PERSONALIZED

    def __init__(
        self,
        client: Any,
        profile_builder: InterestProfileBuilder,
        behavior_store: BehaviorStore,
        content_store: ContentStore,
        candidate_pool: int = config.AI_CANDIDATE_POOL_SIZE,
        recent_activity: int = 50,
    ) -> None:
        self._client = client
        self._profiles = profile_builder
        self._behavior_store = behavior_store
        self._content_store = content_store
        self._candidate_pool = candidate_pool
        self._recent_activity = recent_activity

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

        candidates = {
            item.content_id: item
            for item in self._content_store.list_items(content_type, limit=self._candidate_pool)
            if item.creator_id != user_id and item.content_id not in exclude_ids
        }
        if not candidates:
            return []

        profile = self._profiles.build(user_id)
        prompt = self.build_prompt(profile, user_id, list(candidates.values()), limit)
        if self.cancelled(cancel):
            return []

        reply = self._client.generate_content(prompt)
        try:
            entries = self.parse_reply(reply)
        except ValueError:
            logger.warning("Could not parse AI recommendations for user %r", user_id)
            return []

        recommendations: dict[str, Recommendation] = {}
        for entry in entries:
            item = candidates.get(str(entry.get("id", "")))
            if item is None or item.content_id in recommendations:
                continue
            recommendations[item.content_id] = Recommendation(
                content_id=item.content_id,
                content_type=content_type,
                reason=_map_reason(entry.get("reason")),
                source=self.source,
                score=_clamp_score(entry.get("score")),
                created_at=item.created_at,
                metadata={"explanation": str(entry.get("explanation", ""))},
            )

        ranked = sorted(recommendations.values(), key=ranking_key)
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Prompt and reply handling
    # ------------------------------------------------------------------

    def build_prompt(
        self,
        profile: InterestProfile,
        user_id: str,
        candidates: list[ContentItem],
        limit: int,
    ) -> str:
        activity = self._behavior_store.events_for_user(user_id, limit=self._recent_activity)
        user_summary = {
            "interests": [
                topic
                for topic, _ in sorted(profile.topics.items(), key=lambda kv: kv[1], reverse=True)[:20]
            ],
            "preferredContentTypes": [
                ct.value
                for ct, _ in sorted(
                    profile.content_type_preference.items(), key=lambda kv: kv[1], reverse=True
                )
            ],
            "engagementPatterns": {
                bt.value: round(w, 4) for bt, w in profile.engagement_patterns.items()
            },
            "recentActivity": [
                {
                    "type": e.behavior_type.value,
                    "contentType": e.content_type.value,
                    "timestamp": e.timestamp.isoformat(),
                }
                for e in reversed(activity)
            ],
        }
        content = [
            {
                "id": item.content_id,
                "type": item.content_type.value,
                "createdAt": item.created_at.isoformat(),
                "topics": item.topics,
            }
            for item in candidates
        ]
        return _PROMPT_TEMPLATE.format(
            profile=json.dumps(user_summary, indent=2),
            content=json.dumps(content, indent=2),
            limit=limit,
            reasons=", ".join(f'"{r.value}"' for r in _ALLOWED_REASONS),
        )

    @staticmethod
    def parse_reply(reply: str) -> list[dict[str, Any]]:
        """Extract the JSON array of recommendation objects from *reply*.

        Raises:
            ValueError: If no JSON array of objects can be found.
        """
        match = _JSON_ARRAY.search(reply or "")
        if match is None:
            raise ValueError("no JSON array in model reply")
        data = json.loads(match.group(0))
        if not isinstance(data, list):
            raise ValueError("model reply is not a JSON array")
        return [entry for entry in data if isinstance(entry, dict)]


def _map_reason(value: Any) -> RecommendationReason:
    try:
        reason = RecommendationReason(value)
    except ValueError:
        return RecommendationReason.SIMILAR_CONTENT
    return reason if reason in _ALLOWED_REASONS else RecommendationReason.SIMILAR_CONTENT


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)
