"""
Configuration and constants for the Beatmap Recs recommendation engine.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

# =============================================================================
# SCORING SERVICE CONFIGURATION
# =============================================================================
OSU_API_BASE_URL = os.environ.get("OSU_API_BASE_URL", "https://osu.ppy.sh/api")
OSU_API_KEY = os.environ.get("OSU_API_KEY", "")

# =============================================================================
# DIFFICULTY ADJUSTMENT
# =============================================================================
# Rough star multipliers used only to centre the search band and as a
# fallback when the service does not return a mod-adjusted star rating.
MOD_STAR_MULTIPLIERS: Dict[str, float] = {
    "EZ": 0.80,
    "HR": 1.08,
    "DT": 1.40,
    "HT": 0.75,
    "FL": 1.10,
}

# Beatmap statuses (wire values) that count as reviewed content
ACCEPTED_STATUSES = (1, 2)  # ranked, approved


# =============================================================================
# HTTP / RETRY
# =============================================================================
@dataclass
class RetryConfig:
    """Retry and throttling policy for outbound requests."""
    # Total attempts per request, first try included
    max_attempts: int = 4

    # urllib3 backoff: sleep = backoff_factor * 2 ** (retry - 1)
    backoff_factor: float = 0.5
    max_backoff: float = 30.0

    # Per-request socket timeout (seconds)
    timeout: float = 15.0

    # Minimum spacing between requests (seconds)
    min_request_interval: float = 0.1

    # Statuses retried with backoff before being mapped to an error
    retry_statuses: tuple = (429, 500, 502, 503, 504)


@dataclass
class ClientConfig:
    """Configuration for the scoring service client."""
    base_url: str = OSU_API_BASE_URL

    # get_user_best has no offset; 100 is the most one request returns
    top_play_limit: int = 100

    # Catalogue walk over get_beatmaps, paged by approval date
    search_page_size: int = 500
    max_search_pages: int = 20

    # How far back the walk starts; None walks from the first ranked map
    search_window_days: Optional[int] = 730

    retry: RetryConfig = field(default_factory=RetryConfig)

DEFAULT_CLIENT_CONFIG = ClientConfig()


# =============================================================================
# SKILL PROFILING
# =============================================================================
@dataclass
class ProfilerConfig:
    """Configuration for turning top plays into a skill estimate."""
    # Minimum plays in a mod group before it gets a target difficulty
    min_support: int = 3

    # weight_i = decay_factor ** i over plays sorted by pp descending
    decay_factor: float = 0.6

    def __post_init__(self):
        if self.min_support < 1:
            raise ValueError("min_support must be at least 1")
        if not 0.0 < self.decay_factor <= 1.0:
            raise ValueError("decay_factor must be in (0, 1]")

DEFAULT_PROFILER_CONFIG = ProfilerConfig()


# =============================================================================
# CANDIDATE SELECTION
# =============================================================================
@dataclass
class CandidateConfig:
    """Configuration for candidate beatmap selection."""
    # Search band half-width in stars around the target difficulty
    tolerance: float = 0.5

    # Mod groups searched at the same time
    concurrency: int = 3

    def __post_init__(self):
        if self.tolerance < 0:
            raise ValueError("tolerance must not be negative")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

DEFAULT_CANDIDATE_CONFIG = CandidateConfig()


# =============================================================================
# RANKING
# =============================================================================
@dataclass
class RankerConfig:
    """Configuration for the final ranking."""
    max_results: int = 100

DEFAULT_RANKER_CONFIG = RankerConfig()


# =============================================================================
# ENGINE
# =============================================================================
@dataclass
class EngineConfig:
    """Everything the recommendation engine needs, passed in explicitly."""
    client: ClientConfig = field(default_factory=ClientConfig)
    profiler: ProfilerConfig = field(default_factory=ProfilerConfig)
    candidates: CandidateConfig = field(default_factory=CandidateConfig)
    ranker: RankerConfig = field(default_factory=RankerConfig)

DEFAULT_ENGINE_CONFIG = EngineConfig()


# =============================================================================
# CACHING CONFIGURATION
# =============================================================================
CACHE_DIR = os.environ.get(
    "BEATMAP_RECS_CACHE_DIR",
    os.path.join(os.path.dirname(__file__), ".cache"),
)
LAST_RECOMMENDATIONS_KEY = "LastRecommendations"
