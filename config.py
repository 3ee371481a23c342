"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.  Scoring
constants below are tuning knobs, not measured production values.
"""

import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# gRPC server (the API layer connects to us on this address)
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

# Port for the Prometheus HTTP exporter.  0 disables it.
METRICS_PORT: int = int(os.getenv("METRICS_PORT", "0"))

# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

# Optional JSON file with ``items`` and ``events`` arrays, loaded into the
# in-memory stores at start-up.
SEED_DATA_PATH: str = os.getenv("SEED_DATA_PATH", "")

# ---------------------------------------------------------------------------
# Interest profile
# ---------------------------------------------------------------------------

PROFILE_HALF_LIFE_HOURS: float = float(os.getenv("PROFILE_HALF_LIFE_HOURS", "168"))
PROFILE_WINDOW_DAYS: int = int(os.getenv("PROFILE_WINDOW_DAYS", "90"))
PROFILE_MAX_EVENTS: int = int(os.getenv("PROFILE_MAX_EVENTS", "500"))
PROFILE_CACHE_TTL_SECONDS: int = int(os.getenv("PROFILE_CACHE_TTL_SECONDS", "300"))

# Implicit intent strength per behaviour type.  Must keep the ordering
# save > share > comment > like > click > view > dwell_time.
BEHAVIOR_BASE_WEIGHTS: dict[str, float] = {
    "save": 5.0,
    "share": 4.0,
    "comment": 3.0,
    "like": 2.0,
    "follow": 2.0,
    "click": 1.0,
    "view": 0.5,
    "dwell_time": 0.25,
    "search": 0.25,
}

# ---------------------------------------------------------------------------
# Similarity index / collaborative filtering
# ---------------------------------------------------------------------------

SIMILARITY_CACHE_TTL_SECONDS: int = int(os.getenv("SIMILARITY_CACHE_TTL_SECONDS", "60"))
COLLABORATIVE_NEIGHBOURS: int = int(os.getenv("COLLABORATIVE_NEIGHBOURS", "20"))

# ---------------------------------------------------------------------------
# Content-based filtering
# ---------------------------------------------------------------------------

# Items the user interacted with inside this window are not recommended again.
SEEN_WINDOW_DAYS: int = int(os.getenv("SEEN_WINDOW_DAYS", "30"))
CANDIDATE_POOL_SIZE: int = int(os.getenv("CANDIDATE_POOL_SIZE", "500"))

# ---------------------------------------------------------------------------
# Trending
# ---------------------------------------------------------------------------

TRENDING_TIMEFRAME: str = os.getenv("TRENDING_TIMEFRAME", "day")
TRENDING_HALF_LIFE_HOURS: float = float(os.getenv("TRENDING_HALF_LIFE_HOURS", "24"))

# ---------------------------------------------------------------------------
# Feed composer
# ---------------------------------------------------------------------------

DIVERSITY_CAP: float = float(os.getenv("DIVERSITY_CAP", "0.4"))
GENERATOR_TIMEOUT_SECONDS: float = float(os.getenv("GENERATOR_TIMEOUT_SECONDS", "0.25"))
# Each concurrent RPC submits one task per generator.  build_engine raises
# this to GRPC_MAX_WORKERS times the wired generator count when smaller.
COMPOSER_MAX_WORKERS: int = int(os.getenv("COMPOSER_MAX_WORKERS", str(GRPC_MAX_WORKERS * 4)))

AI_PERSONALIZED_ENABLED: bool = _env_bool("AI_PERSONALIZED_ENABLED")
AI_CANDIDATE_POOL_SIZE: int = int(os.getenv("AI_CANDIDATE_POOL_SIZE", "50"))
AI_GENERATOR_TIMEOUT_SECONDS: float = float(os.getenv("AI_GENERATOR_TIMEOUT_SECONDS", "2.0"))
