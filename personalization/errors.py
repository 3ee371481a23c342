"""Error taxonomy for the personalization core."""

from __future__ import annotations

from dataclasses import dataclass

from personalization.models import RecommendationSource


class FeedError(Exception):
    """Base class for all personalization errors."""


class ValidationError(FeedError, ValueError):
    """A malformed event or request.  Reject immediately; do not retry."""


class UpstreamUnavailable(FeedError):
    """The content or behavior store cannot be reached."""


@dataclass(frozen=True)
class PartialDegradation:
    """One generator contributed nothing to a composed feed.

    Not an error: composition continues without the source.

    Attributes:
        source: The generator that degraded.
        kind: One of ``empty``, ``timeout``, ``error``, ``unavailable``,
            ``cancelled``.
        detail: Free-form description for logs.
    """

    source: RecommendationSource
    kind: str
    detail: str = ""
