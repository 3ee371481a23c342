"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import json
import logging
import signal
import sys
from concurrent import futures
from datetime import datetime
from pathlib import Path
from typing import Any

import grpc
from prometheus_client import start_http_server

import config
from personalization.behavior_log import BehaviorLog, coerce_content_type
from personalization.composer import FeedComposer
from personalization.engine import PersonalizationEngine
from personalization.generators.ai_personalized import AIPersonalizedGenerator
from personalization.generators.base import CandidateGenerator
from personalization.generators.collaborative import CollaborativeGenerator
from personalization.generators.content_based import ContentBasedGenerator
from personalization.generators.trending import TrendingGenerator
from personalization.models import ContentItem, RecommendationSource
from personalization.profile import InterestProfileBuilder
from personalization.service import FeedServicer, add_FeedServicer_to_server
from personalization.similarity import SimilarityIndex
from personalization.stores import (
    BehaviorStore,
    ContentStore,
    InMemoryBehaviorStore,
    InMemoryContentStore,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine(
    content_store: ContentStore,
    behavior_store: BehaviorStore,
    ai_client: Any = None,
) -> PersonalizationEngine:
    """Construct the engine with every generator wired to the given stores.

    Args:
        content_store: Content metadata source.
        behavior_store: Behavior event log.
        ai_client: Optional text-generation client (``generate_content``).
            The AI-personalized generator is only added when this is given
            and ``AI_PERSONALIZED_ENABLED`` is set.

    Returns:
        A ready :class:`~personalization.engine.PersonalizationEngine`.
    """
    behavior_log = BehaviorLog(behavior_store)
    profiles = InterestProfileBuilder(behavior_store, content_store)
    similarity = SimilarityIndex(profiles, behavior_store)
    trending = TrendingGenerator(behavior_store, content_store)

    generators: list[CandidateGenerator] = [
        ContentBasedGenerator(profiles, behavior_store, content_store),
        CollaborativeGenerator(similarity, behavior_store, content_store),
        trending,
    ]
    timeouts: dict[RecommendationSource, float] = {}
    if ai_client is not None and config.AI_PERSONALIZED_ENABLED:
        generators.insert(
            0, AIPersonalizedGenerator(ai_client, profiles, behavior_store, content_store)
        )
        timeouts[RecommendationSource.AI_PERSONALIZED] = config.AI_GENERATOR_TIMEOUT_SECONDS
        logger.info("AI-personalized generator enabled.")

    composer = FeedComposer(
        generators,
        fallback=trending,
        timeouts=timeouts,
        max_workers=max(config.COMPOSER_MAX_WORKERS, config.GRPC_MAX_WORKERS * len(generators)),
    )
    return PersonalizationEngine(
        behavior_log=behavior_log,
        profile_builder=profiles,
        similarity_index=similarity,
        composer=composer,
        content_store=content_store,
    )


def build_server(engine: PersonalizationEngine) -> grpc.Server:
    """Construct the gRPC server with the feed service registered.

    Returns:
        A configured but not-yet-started :class:`grpc.Server`.
    """
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS))
    add_FeedServicer_to_server(FeedServicer(engine), server)
    server.add_insecure_port(f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}")
    return server


def load_seed_data(
    path: str | Path,
    content_store: InMemoryContentStore,
    behavior_log: BehaviorLog,
) -> tuple[int, int]:
    """Load ``items`` and ``events`` from a JSON file into the stores.

    Items need ``id``, ``contentType`` and ``createdAt`` (ISO 8601), and
    may carry ``topics`` and ``creatorId``.  Events use the same camelCase
    keys as the ``LogBehavior`` RPC.  Invalid events abort the load.

    Returns:
        ``(items_loaded, events_loaded)``.
    """
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    items = [
        ContentItem(
            content_id=str(raw["id"]),
            content_type=coerce_content_type(raw["contentType"]),
            created_at=datetime.fromisoformat(raw["createdAt"].replace("Z", "+00:00")),
            topics=list(raw.get("topics", [])),
            creator_id=raw.get("creatorId"),
        )
        for raw in data.get("items", [])
    ]
    content_store.add_items(items)

    events = data.get("events", [])
    for raw in events:
        behavior_log.record_payload(raw)
    return len(items), len(events)


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Create the in-memory stores and load seed data, if configured.
    2. Build the engine and the gRPC server.
    3. Start the Prometheus exporter, if configured.
    4. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    5. Start serving.
    """
    content_store = InMemoryContentStore()
    behavior_store = InMemoryBehaviorStore()
    engine = build_engine(content_store, behavior_store)

    if config.SEED_DATA_PATH:
        logger.info("Loading seed data from %s", config.SEED_DATA_PATH)
        n_items, n_events = load_seed_data(
            config.SEED_DATA_PATH, content_store, engine.behavior_log
        )
        logger.info("Seed data loaded: %d items, %d events.", n_items, n_events)

    server = build_server(engine)

    if config.METRICS_PORT:
        start_http_server(config.METRICS_PORT)
        logger.info("Prometheus metrics on port %d", config.METRICS_PORT)

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down…", sig_name)
        server.stop(grace=5)
        engine.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    server.start()
    logger.info(
        "Personalization gRPC server listening on %s:%d",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()
