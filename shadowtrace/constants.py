"""Search, matching and cache defaults shared by the engine and the config models."""

from __future__ import annotations

# Ranking pagination
MAX_PAGES = 1600
MAX_BATCH_SIZE = 30
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 2.0
KR_PARTITION = 5
DEFAULT_PARTITION = 1

# Heuristic match thresholds (milliseconds) and damage cross-check tolerance
TIME_DIFF_MS = 10_000
DURATION_DIFF_MS = 5_000
RDPS_DIFF_RATIO = 0.001

# A session marker older than this on startup means the previous run died mid-search
CLEANUP_THRESHOLD_SECONDS = 60.0

ANONYMOUS_NAMES = frozenset({"Anonymous", "anonymous"})

FFLOGS_API_URL = "https://www.fflogs.com/api/v2/client"
FFLOGS_TOKEN_URL = "https://www.fflogs.com/oauth/token"
FFLOGS_REPORT_URL = "https://www.fflogs.com/reports"
