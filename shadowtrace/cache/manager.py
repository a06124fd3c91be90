"""Cache management: file export/import and confirmed deletion."""

from __future__ import annotations

import gzip
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from shadowtrace import logger
from shadowtrace.cache.ranking_cache import ImportResult, RankingCache
from shadowtrace.protocols import ConfirmSink


@dataclass(frozen=True)
class ExportSummary:
    path: Path
    entry_count: int
    raw_bytes: int
    written_bytes: int

    @property
    def compression_ratio(self) -> float:
        if not self.raw_bytes:
            return 0.0
        return 1 - self.written_bytes / self.raw_bytes


def _is_gzip_path(path: Path) -> bool:
    return path.suffix.lower() == ".gz"


def default_export_path(directory: Path = Path(".")) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return directory / f"shadowtrace-cache-{stamp}.json.gz"


def export_cache_to_file(cache: RankingCache, path: Path) -> ExportSummary:
    """Write every cached page as a JSON list of {key, data}; gzip when the path ends in .gz."""
    export_data = cache.export_cache()
    if not export_data:
        raise ValueError("No cached data to export.")

    raw = json.dumps(export_data).encode("utf-8")
    payload = gzip.compress(raw) if _is_gzip_path(path) else raw
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    logger.info(f"Exported {len(export_data)} cache entries to {path}")
    return ExportSummary(path=path, entry_count=len(export_data), raw_bytes=len(raw), written_bytes=len(payload))


def import_cache_from_file(cache: RankingCache, path: Path) -> ImportResult:
    """Read a .json or .json.gz export and merge it by timestamp."""
    data = path.read_bytes()
    try:
        if _is_gzip_path(path):
            data = gzip.decompress(data)
        import_data = json.loads(data.decode("utf-8"))
    except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Invalid cache file: {path}") from exc

    result = cache.import_cache(import_data)
    logger.info(
        f"Imported {result.imported_count} of {result.total_count} cache entries "
        f"({result.skipped_count} skipped, already up to date)"
    )
    return result


def clear_encounter_cache(
    cache: RankingCache,
    confirm: ConfirmSink,
    encounter_id: int,
    region: str | None = None,
    partition: int | None = None,
) -> int:
    partition_text = f" (partition {partition})" if partition else ""
    if not confirm("Clear cache", f"Delete the cache for encounter {encounter_id}{partition_text}?"):
        return 0
    removed = cache.clear_encounter(encounter_id, region, partition)
    logger.info(f"Removed {removed} cached page(s) for encounter {encounter_id}.")
    return removed


def clear_all_cache(cache: RankingCache, confirm: ConfirmSink) -> bool:
    if not confirm("Clear all cache", "Delete every cached ranking page? This cannot be undone."):
        return False
    cache.clear()
    logger.info("Cleared all cached ranking pages.")
    return True
