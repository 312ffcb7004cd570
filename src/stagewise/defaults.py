"""Single source of truth for shared constants and configuration defaults.

Every magic number, threshold, or default that appears in more than one module
is defined here.  Constants that are truly local to one module stay in that
module.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Query limits
# ---------------------------------------------------------------------------

QUERY_LIMIT_SMALL = 200         # default for paginated list endpoints
QUERY_LIMIT_LARGE = 10_000      # task listings that feed counts
QUERY_PAGE_SIZE = 5_000         # page size when a projection reads the whole log

MAX_INTAKE_BATCH = 200

# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# Range key -> window length in days.  "all" has no comparison window.
RANGE_WINDOWS: dict[str, int] = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}
RANGE_ALL = "all"
DEFAULT_RANGE = "quarter"
ALL_TIME_START = "2020-01-01T00:00:00+00:00"

# Chart endpoints take day-count range keys; unknown keys use the default
TIMESERIES_RANGES: dict[str, int] = {
    "7d": 7,
    "30d": 30,
    "month": 30,
    "90d": 90,
    "365d": 365,
    "year": 365,
}
TIMESERIES_DEFAULT_RANGE = "30d"
DAY_WINDOW_RANGES: dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}  # heatmap and leaderboard
HEATMAP_DEFAULT_RANGE = "90d"
LEADERBOARD_DEFAULT_RANGE = "30d"
LEADERBOARD_DEFAULT_LIMIT = 10
LEADERBOARD_MAX_LIMIT = 100

# ---------------------------------------------------------------------------
# SLA / urgency rules
# ---------------------------------------------------------------------------

DEFAULT_STAGE_HOURS: list[float] = [24, 48, 72]
FALLBACK_STAGE_HOURS = 48.0
DEFAULT_AWAITING_RESPONSE_STAGES: list[str] = ["cv sent", "contacted"]
TASK_DUE_SOON_MS = 24 * HOUR_MS

ESCALATION_TITLE_PREFIX = "Check in: "
CHASE_TITLE = "Chase client feedback"

# ---------------------------------------------------------------------------
# Client response learning (EMA)
# ---------------------------------------------------------------------------

EMA_ALPHA = 0.3
MAX_SAMPLE_COUNT = 1000
DEFAULT_CHASE_DELAY_MS = 48 * HOUR_MS
MIN_CHASE_DELAY_MS = 24 * HOUR_MS
MAX_CHASE_DELAY_MS = 72 * HOUR_MS
CHASE_LEAD_FACTOR = 0.75

# ---------------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------------

MIN_PIPELINE_STAGES = 2
MAX_PIPELINE_STAGES = 10

# ---------------------------------------------------------------------------
# Rate limiting: class -> (max_requests, window_seconds)
# ---------------------------------------------------------------------------

RATE_LIMIT_CLASSES: dict[str, tuple[int, int]] = {
    "auth": (10, 15 * 60),
    "email": (20, 60 * 60),
    "standard": (100, 60),
    "readonly": (300, 60),
    "analytics": (60, 60),
}

# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------

WORKER_POLL_INTERVAL_SECONDS = 300
