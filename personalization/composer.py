"""Feed composer: fans out to the generators and merges their candidates."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping, Sequence
from concurrent import futures
from dataclasses import dataclass, field, replace

from prometheus_client import Counter, Histogram

import config
from personalization.errors import PartialDegradation, UpstreamUnavailable, ValidationError
from personalization.generators.base import CandidateGenerator
from personalization.models import ContentType, Recommendation, RecommendationSource, ranking_key

logger = logging.getLogger(__name__)

GENERATOR_DEGRADED = Counter(
    "feed_generator_degraded_total",
    "Generators that contributed nothing to a composed feed",
    ["source", "kind"],
)
COMPOSE_LATENCY = Histogram(
    "feed_compose_latency_seconds",
    "Time spent composing a personalized feed",
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# How often the join loop checks the caller's cancel flag.
_POLL_INTERVAL_SECONDS = 0.05


@dataclass
class FeedResult:
    """A composed feed plus the sources that contributed nothing."""

    items: list[Recommendation]
    degraded: list[PartialDegradation] = field(default_factory=list)


class FeedComposer:
    """Merges candidates from several generators into one ranked feed.

    Steps for :meth:`compose`:

    1. Run every generator concurrently for up to ``limit`` candidates.
       Each has its own timeout; a late, failing or empty generator counts
       as "no contribution" (a :class:`PartialDegradation`).
    2. Merge duplicate ids, keeping the highest-scoring occurrence and its
       source.  ``metadata["sources"]`` lists every proposing source.
    3. Sort by :func:`~personalization.models.ranking_key` and apply the
       diversity cap: at most ``floor(limit × diversity_cap)`` items per
       source above the cut line.  Items over the cap are demoted below
       it, not dropped.
    4. If fewer than ``limit`` items remain, backfill from the fallback
       (trending) generator with ids not already present.
    5. Return at most ``limit`` items.

    Only if *every* generator raises
    :class:`~personalization.errors.UpstreamUnavailable` does
    :meth:`compose` raise it too.

    Args:
        generators: Generators to fan out to, in merge-priority order.
        fallback: Generator used for backfill; normally the trending one,
            which should also be in *generators*.
        diversity_cap: Fraction of the feed one source may fill above the
            cut line.
        timeout_seconds: Default per-generator timeout.
        timeouts: Per-source timeout overrides.
        max_workers: Size of the shared generator thread pool.
    """

    def __init__(
        self,
        generators: Sequence[CandidateGenerator],
        fallback: CandidateGenerator,
        diversity_cap: float = config.DIVERSITY_CAP,
        timeout_seconds: float = config.GENERATOR_TIMEOUT_SECONDS,
        timeouts: Mapping[RecommendationSource, float] | None = None,
        max_workers: int = config.COMPOSER_MAX_WORKERS,
    ) -> None:
        if not generators:
            raise ValueError("at least one generator is required")
        if not 0.0 < diversity_cap <= 1.0:
            raise ValueError(f"diversity_cap must be in (0, 1], got {diversity_cap!r}")
        self._generators = list(generators)
        self._fallback = fallback
        self._diversity_cap = diversity_cap
        self._timeout = timeout_seconds
        self._timeouts = dict(timeouts or {})
        self._max_workers = max_workers
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="feed-generator"
        )

    @property
    def generators(self) -> list[CandidateGenerator]:
        return list(self._generators)

    @property
    def max_workers(self) -> int:
        return self._max_workers

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def compose(
        self,
        user_id: str,
        content_type: ContentType,
        limit: int,
        cancel: threading.Event | None = None,
    ) -> list[Recommendation]:
        """Return at most *limit* ranked, de-duplicated recommendations."""
        return self.compose_detailed(user_id, content_type, limit, cancel).items

    def compose_detailed(
        self,
        user_id: str,
        content_type: ContentType,
        limit: int,
        cancel: threading.Event | None = None,
    ) -> FeedResult:
        """Like :meth:`compose` but also report degraded sources.

        Args:
            user_id: The requesting user.  Must be non-empty.
            content_type: The kind of content to rank.
            limit: Maximum feed length.  Must be at least 1.
            cancel: Set by the caller to abandon the request; in-flight
                generators are told to stop and the partial result returned.

        Raises:
            ValidationError: On an empty *user_id* or a *limit* below 1.
            UpstreamUnavailable: If every generator's store is unreachable.
        """
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit!r}")

        start = time.monotonic()
        candidates, degraded = self._fan_out(user_id, content_type, limit, cancel)

        ranked = sorted(_merge(candidates), key=ranking_key)
        feed = self._apply_diversity_cap(ranked, limit)

        if len(feed) < limit and not (cancel is not None and cancel.is_set()):
            feed.extend(self._backfill(user_id, content_type, limit - len(feed), feed))

        feed = feed[:limit]
        elapsed = time.monotonic() - start
        COMPOSE_LATENCY.observe(elapsed)
        logger.debug(
            "Composed %d/%d %s items for user %r in %.1fms (%d degraded)",
            len(feed),
            limit,
            content_type.value,
            user_id,
            elapsed * 1000,
            len(degraded),
        )
        return FeedResult(items=feed, degraded=degraded)

    def shutdown(self) -> None:
        """Stop the generator thread pool without waiting for stragglers."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fan_out(
        self,
        user_id: str,
        content_type: ContentType,
        limit: int,
        cancel: threading.Event | None,
    ) -> tuple[list[list[Recommendation]], list[PartialDegradation]]:
        """Run all generators concurrently and collect what arrives in time."""
        stop = threading.Event()
        submitted = {
            self._executor.submit(
                generator.generate, user_id, content_type, limit, frozenset(), stop
            ): generator
            for generator in self._generators
        }
        start = time.monotonic()
        deadlines = {
            future: start + self._timeouts.get(generator.source, self._timeout)
            for future, generator in submitted.items()
        }

        # future -> "timeout" | "cancelled"; decided before ``stop`` is set so a
        # generator that returns on the stop signal is still reported late.
        abandoned: dict[futures.Future, str] = {}
        pending = set(submitted)
        while pending:
            now = time.monotonic()
            expired = {f for f in pending if deadlines[f] <= now}
            abandoned.update(dict.fromkeys(expired, "timeout"))
            pending -= expired
            if not pending:
                break
            if cancel is not None and cancel.is_set():
                abandoned.update(dict.fromkeys(pending, "cancelled"))
                break
            wait_for = min(min(deadlines[f] for f in pending) - now, _POLL_INTERVAL_SECONDS)
            _, pending = futures.wait(
                pending, timeout=max(wait_for, 0.0), return_when=futures.FIRST_COMPLETED
            )

        # Anything still running is abandoned; let it notice and return early.
        stop.set()

        results: list[list[Recommendation]] = []
        degraded: list[PartialDegradation] = []
        unavailable = 0
        for future, generator in submitted.items():
            source = generator.source
            if future in abandoned:
                future.cancel()
                degraded.append(PartialDegradation(source, abandoned[future]))
                continue
            try:
                recs = future.result()
            except UpstreamUnavailable as exc:
                unavailable += 1
                degraded.append(PartialDegradation(source, "unavailable", str(exc)))
                continue
            except Exception as exc:
                logger.exception("Generator %s failed for user %r", source.value, user_id)
                degraded.append(PartialDegradation(source, "error", repr(exc)))
                continue
            if not recs:
                degraded.append(PartialDegradation(source, "empty"))
                continue
            results.append([r for r in recs[:limit] if r.content_type == content_type])

        for item in degraded:
            GENERATOR_DEGRADED.labels(source=item.source.value, kind=item.kind).inc()
            if item.kind != "empty":
                logger.warning(
                    "Generator %s degraded (%s) for user %r %s",
                    item.source.value,
                    item.kind,
                    user_id,
                    item.detail,
                )

        if unavailable == len(self._generators):
            raise UpstreamUnavailable("no candidate source is reachable")
        return results, degraded

    def _apply_diversity_cap(self, ranked: list[Recommendation], limit: int) -> list[Recommendation]:
        """Demote items that push one source past its share of the feed."""
        cap = max(1, int(limit * self._diversity_cap))
        counts: dict[RecommendationSource, int] = {}
        kept: list[Recommendation] = []
        demoted: list[Recommendation] = []
        for rec in ranked:
            if counts.get(rec.source, 0) < cap:
                counts[rec.source] = counts.get(rec.source, 0) + 1
                kept.append(rec)
            else:
                demoted.append(rec)
        return kept + demoted

    def _backfill(
        self,
        user_id: str,
        content_type: ContentType,
        needed: int,
        feed: list[Recommendation],
    ) -> list[Recommendation]:
        """Top up the feed from the fallback generator."""
        present = {rec.content_id for rec in feed}
        try:
            extra = self._fallback.generate(
                user_id, content_type, needed + len(present), exclude_ids=present
            )
        except Exception:
            logger.exception(
                "Backfill from %s failed for user %r", self._fallback.source.value, user_id
            )
            return []
        backfill = []
        for rec in extra:
            if rec.content_id not in present and rec.content_type == content_type:
                present.add(rec.content_id)
                backfill.append(rec)
        return backfill[:needed]


def _merge(candidate_lists: list[list[Recommendation]]) -> list[Recommendation]:
    """Keep the best-scoring occurrence of each id, recording all sources."""
    best: dict[str, Recommendation] = {}
    sources: dict[str, list[str]] = {}
    for recs in candidate_lists:
        for rec in recs:
            proposing = sources.setdefault(rec.content_id, [])
            if rec.source.value not in proposing:
                proposing.append(rec.source.value)
            current = best.get(rec.content_id)
            if current is None or rec.score > current.score:
                best[rec.content_id] = rec
    return [
        replace(rec, metadata={**rec.metadata, "sources": sources[content_id]})
        for content_id, rec in best.items()
    ]
