"""Ranking search: page discovery, batch fetching, matching and orchestration."""

from .matcher import LogMatcher, damage_matches
from .orchestrator import SearchOrchestrator, SearchOutcome
from .rankings import STOP, RankingFetcher, compute_batch_size
from .report import Report
from .search_mode import run_search
from .url_utils import parse_report_url, report_url

__all__ = [
    "LogMatcher",
    "RankingFetcher",
    "Report",
    "STOP",
    "SearchOrchestrator",
    "SearchOutcome",
    "compute_batch_size",
    "damage_matches",
    "parse_report_url",
    "report_url",
    "run_search",
]
