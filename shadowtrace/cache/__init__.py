"""Durable ranking cache and its SQLite store."""

from .manager import (
    ExportSummary,
    clear_all_cache,
    clear_encounter_cache,
    default_export_path,
    export_cache_to_file,
    import_cache_from_file,
)
from .ranking_cache import EncounterCacheInfo, ImportResult, RankingCache
from .store import LocalStore

__all__ = [
    "EncounterCacheInfo",
    "ExportSummary",
    "ImportResult",
    "LocalStore",
    "RankingCache",
    "clear_all_cache",
    "clear_encounter_cache",
    "default_export_path",
    "export_cache_to_file",
    "import_cache_from_file",
]
