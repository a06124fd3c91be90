"""Durable cache of fetched ranking pages with crash-safe search sessions."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from shadowtrace import logger
from shadowtrace.cache.store import LocalStore
from shadowtrace.constants import CLEANUP_THRESHOLD_SECONDS
from shadowtrace.types import CacheEntry, RankingPage, SearchCoordinate

SEARCH_MARKER_KEY = "search_in_progress"


@dataclass
class ImportResult:
    imported_count: int = 0
    skipped_count: int = 0
    total_count: int = 0
    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class EncounterCacheInfo:
    """Cached pages grouped by encounter, region and partition."""

    encounter_id: Optional[int]
    encounter_name: str
    region: str
    partition: str
    partition_name: Optional[str] = None
    count: int = 0
    size_bytes: int = 0
    oldest: float = 0.0
    latest: float = 0.0

    @property
    def size_formatted(self) -> str:
        if self.size_bytes < 1024:
            return f"{self.size_bytes}B"
        if self.size_bytes < 1024 * 1024:
            return f"{self.size_bytes / 1024:.1f}KB"
        return f"{self.size_bytes / (1024 * 1024):.1f}MB"


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


class RankingCache:
    """Ranking pages keyed by coordinate + page, persisted in a ``LocalStore``."""

    def __init__(
        self,
        store: LocalStore,
        *,
        cleanup_threshold_seconds: float = CLEANUP_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cleanup_threshold_seconds = float(cleanup_threshold_seconds)
        self._clock = clock
        self.initialized = False
        self.search_start_time: float | None = None
        self._keys_added_in_search: set[str] = set()

    def init(self) -> int:
        """Run the crash-recovery sweep once per process. Returns the number of entries removed."""
        if self.initialized:
            return 0
        removed = self.cleanup_incomplete_searches()
        self.initialized = True
        return removed

    # Pages

    def get(self, coordinate: SearchCoordinate, page: int) -> CacheEntry | None:
        raw = self.store.get_entry(coordinate.cache_key(page))
        return CacheEntry.from_dict(raw) if raw else None

    def set(
        self,
        coordinate: SearchCoordinate,
        page: int,
        data: RankingPage,
        encounter_name: str | None = None,
        partition_name: str | None = None,
    ) -> bool:
        """Persist one page. Pages without rankings are never stored."""
        if not data.rankings:
            return False

        key = coordinate.cache_key(page)
        entry = CacheEntry(
            rankings=list(data.rankings),
            has_more_pages=data.has_more_pages,
            encounter_name=encounter_name or data.encounter_name or f"Encounter {coordinate.encounter_id}",
            timestamp=self._clock(),
            encounter_id=coordinate.encounter_id,
            region=coordinate.region,
            partition=coordinate.partition,
            partition_name=partition_name,
        )
        if self.search_start_time is not None:
            self._keys_added_in_search.add(key)
        self.store.put_entry(key, entry.to_dict(), entry.timestamp)
        return True

    def _coordinate_entries(self, coordinate: SearchCoordinate) -> Iterable[tuple[int, dict[str, Any]]]:
        for key, value in self.store.entries_with_prefix(coordinate.key_prefix()):
            page = coordinate.page_from_key(key)
            if page is not None:
                yield page, value

    def _coordinate_pages(self, coordinate: SearchCoordinate) -> list[int]:
        pages = []
        for key in self.store.keys_with_prefix(coordinate.key_prefix()):
            page = coordinate.page_from_key(key)
            if page is not None:
                pages.append(page)
        return pages

    def has_cache_for_fight(self, coordinate: SearchCoordinate) -> bool:
        return bool(self._coordinate_pages(coordinate))

    def get_cached_max_page(self, coordinate: SearchCoordinate) -> int | None:
        pages = self._coordinate_pages(coordinate)
        return max(pages) if pages else None

    def get_all_cached_players(self, coordinate: SearchCoordinate) -> set[str]:
        names: set[str] = set()
        for _, value in self._coordinate_entries(coordinate):
            for record in CacheEntry.from_dict(value).rankings:
                if record.name and not record.is_anonymous:
                    names.add(record.name)
        return names

    def get_latest_cache_timestamp(self, coordinate: SearchCoordinate) -> float | None:
        timestamps = [float(value.get("timestamp") or 0) for _, value in self._coordinate_entries(coordinate)]
        timestamps = [ts for ts in timestamps if ts]
        return max(timestamps) if timestamps else None

    # Search sessions

    @property
    def search_in_progress(self) -> bool:
        return self.search_start_time is not None

    def start_search(self) -> None:
        self.search_start_time = self._clock()
        self._keys_added_in_search.clear()
        self.store.set_setting(SEARCH_MARKER_KEY, repr(self.search_start_time))

    def finish_search(self) -> None:
        self.search_start_time = None
        self._keys_added_in_search.clear()
        self.store.delete_setting(SEARCH_MARKER_KEY)

    def abort_search(self) -> int:
        """Roll back every page written since ``start_search``."""
        if self.search_start_time is None:
            return 0
        removed = self.store.delete_entries(sorted(self._keys_added_in_search))
        self.search_start_time = None
        self._keys_added_in_search.clear()
        self.store.delete_setting(SEARCH_MARKER_KEY)
        if removed:
            logger.info(f"Rolled back {removed} cached page(s) from the interrupted search.")
        return removed

    def cleanup_incomplete_searches(self) -> int:
        raw_marker = self.store.get_setting(SEARCH_MARKER_KEY)
        if not raw_marker:
            return 0
        try:
            marker = float(raw_marker)
        except ValueError:
            self.store.delete_setting(SEARCH_MARKER_KEY)
            return 0

        if self._clock() - marker < self.cleanup_threshold_seconds:
            return 0

        removed = self.store.delete_entries_since(marker)
        if removed:
            logger.info(f"Removed {removed} incomplete cache entries left by an interrupted search.")
        self.store.delete_setting(SEARCH_MARKER_KEY)
        return removed

    # Management

    def get_cache_info_by_encounter(self) -> list[EncounterCacheInfo]:
        groups: dict[tuple[Any, str, str], EncounterCacheInfo] = {}
        for _, value in self.store.all_entries():
            encounter_id = value.get("encounter_id")
            region = value.get("region") or ""
            partition = str(value.get("partition") or "default")
            group_key = (encounter_id, region, partition)
            info = groups.get(group_key)
            timestamp = float(value.get("timestamp") or 0)
            if info is None:
                info = EncounterCacheInfo(
                    encounter_id=encounter_id,
                    encounter_name=value.get("encounter_name") or f"Encounter {encounter_id}",
                    region=region,
                    partition=partition,
                    oldest=timestamp,
                    latest=timestamp,
                )
                groups[group_key] = info
            info.count += 1
            info.size_bytes += len(json.dumps(value))
            info.oldest = min(info.oldest, timestamp)
            info.latest = max(info.latest, timestamp)
            if value.get("partition_name") and not info.partition_name:
                info.partition_name = value["partition_name"]
        return list(groups.values())

    def clear_encounter(self, encounter_id: int, region: str | None = None, partition: int | None = None) -> int:
        """Remove every cached page of one encounter (any difficulty/size) in a region and partition."""
        target_partition = str(partition or "default")
        doomed = []
        for key, value in self.store.entries_with_prefix(f"{encounter_id}_"):
            if value.get("encounter_id") != encounter_id:
                continue
            if region and value.get("region") != region:
                continue
            if str(value.get("partition") or "default") != target_partition:
                continue
            doomed.append(key)
        return self.store.delete_entries(doomed)

    def clear_coordinate(self, coordinate: SearchCoordinate) -> int:
        keys = [
            key
            for key in self.store.keys_with_prefix(coordinate.key_prefix())
            if coordinate.page_from_key(key) is not None
        ]
        return self.store.delete_entries(keys)

    def clear(self) -> None:
        self.store.clear_entries()

    def export_cache(self) -> list[dict[str, Any]]:
        return [{"key": key, "data": value} for key, value in self.store.all_entries()]

    def import_cache(self, import_data: Any) -> ImportResult:
        """Merge exported entries, keeping whichever copy of a key is newer."""
        entries = _validate_import(import_data)
        result = ImportResult(total_count=len(entries))
        for key, data in entries:
            label = CacheEntry.from_dict(data).display_label()
            incoming_ts = float(data.get("timestamp") or 0)
            existing = self.store.get_entry(key)
            is_newer = existing is None or incoming_ts > float(existing.get("timestamp") or 0)
            if is_newer and data.get("rankings"):
                self.store.put_entry(key, dict(data), incoming_ts)
                result.imported_count += 1
                _append_unique(result.imported, label)
            else:
                result.skipped_count += 1
                _append_unique(result.skipped, label)
        return result


def _validate_import(import_data: Any) -> list[tuple[str, Mapping[str, Any]]]:
    """Check the whole payload up front so a bad entry leaves the store untouched."""
    if not isinstance(import_data, list):
        raise ValueError("Cache import data must be a list of {key, data} entries")
    entries = []
    for idx, entry in enumerate(import_data):
        if not isinstance(entry, Mapping):
            raise ValueError(f"Cache import entry #{idx} is not an object")
        key, data = entry.get("key"), entry.get("data")
        if not isinstance(key, str) or not key or not isinstance(data, Mapping):
            raise ValueError(f"Cache import entry #{idx} must have a string 'key' and an object 'data'")
        timestamp = data.get("timestamp")
        if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, (int, float))):
            raise ValueError(f"Cache import entry #{idx} has a non-numeric timestamp: {timestamp!r}")
        rankings = data.get("rankings")
        if rankings is not None and not isinstance(rankings, list):
            raise ValueError(f"Cache import entry #{idx} has 'rankings' that is not a list")
        entries.append((key, data))
    return entries
