"""
config.py - Configuration model for ShadowTrace
"""

import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from rich.console import Console

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

from shadowtrace import constants
from shadowtrace.rate_limits import (
    MAX_REQUESTS,
    POINTS_PER_REQUEST,
    SAFETY_MARGIN_SECONDS,
    WINDOW_SECONDS,
)

console = Console()

DEFAULT_CACHE_PATH = Path("~/.shadowtrace/cache.sqlite3")


class ApiCredentials(BaseModel):
    """FFLogs API client credentials and endpoints."""

    client_id: str = ""
    client_secret: str = ""
    api_url: str = constants.FFLOGS_API_URL
    token_url: str = constants.FFLOGS_TOKEN_URL
    timeout_seconds: float = 30.0

    def is_configured(self) -> bool:
        return bool(self.client_id.strip() and self.client_secret.strip())


class CacheConfig(BaseModel):
    path: Path = DEFAULT_CACHE_PATH
    cleanup_threshold_seconds: float = Field(
        default=constants.CLEANUP_THRESHOLD_SECONDS,
        description="Age after which a leftover search marker is treated as a crashed run",
    )

    def resolved_path(self) -> Path:
        return self.path.expanduser()


class SearchConfig(BaseModel):
    max_pages: int = constants.MAX_PAGES
    max_batch_size: int = constants.MAX_BATCH_SIZE
    max_retries: int = constants.MAX_RETRIES
    retry_delay_seconds: float = constants.RETRY_DELAY_SECONDS
    search_all_fights: bool = False
    kr_partition: int = constants.KR_PARTITION
    default_partition: int = constants.DEFAULT_PARTITION


class RateLimitConfig(BaseModel):
    window_seconds: float = WINDOW_SECONDS
    max_requests: int = MAX_REQUESTS
    safety_margin_seconds: float = SAFETY_MARGIN_SECONDS
    points_per_request: float = POINTS_PER_REQUEST


class MatchingConfig(BaseModel):
    """Thresholds used by the heuristic match and the damage cross-check."""

    time_diff_ms: int = constants.TIME_DIFF_MS
    duration_diff_ms: int = constants.DURATION_DIFF_MS
    rdps_diff_ratio: float = Field(
        default=constants.RDPS_DIFF_RATIO,
        description="Maximum relative difference allowed between paired damage values",
    )


class ShadowTraceConfig(BaseModel):
    api: ApiCredentials = Field(default_factory=ApiCredentials)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    config_path: Optional[Path] = None


def load_config(config_path: Path) -> ShadowTraceConfig:
    """Load configuration from TOML file"""

    if not config_path.exists():
        console.print(f"[red][ERROR][/red] Configuration file not found: {config_path}")
        console.print("Please create config.toml with your FFLogs API client id and secret")
        sys.exit(1)

    try:
        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)

        return ShadowTraceConfig(
            api=ApiCredentials(**config_data.get("api", {})),
            cache=CacheConfig(**config_data.get("cache", {})),
            search=SearchConfig(**config_data.get("search", {})),
            rate_limit=RateLimitConfig(**config_data.get("rate_limit", {})),
            matching=MatchingConfig(**config_data.get("matching", {})),
            config_path=config_path,
        )

    except Exception as e:
        console.print(f"[red][ERROR][/red] Error loading configuration: {e}")
        sys.exit(1)
