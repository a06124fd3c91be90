"""Shared data structures for the ranking search engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from shadowtrace.constants import ANONYMOUS_NAMES


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class SearchCoordinate:
    """Identifies one ranking list: encounter, difficulty, size, region and partition."""

    encounter_id: int
    difficulty: int
    size: int
    region: Optional[str] = None
    partition: Optional[int] = None

    def key_prefix(self) -> str:
        return f"{self.encounter_id}_{self.difficulty}_{self.size}_{self.region or ''}_"

    def key_suffix(self) -> str:
        return f"_{self.partition or 'default'}"

    def cache_key(self, page: int) -> str:
        return f"{self.key_prefix()}{page}{self.key_suffix()}"

    def page_from_key(self, key: str) -> int | None:
        """Return the page number encoded in ``key`` if the key belongs to this coordinate."""
        prefix, suffix = self.key_prefix(), self.key_suffix()
        if not key.startswith(prefix) or not key.endswith(suffix):
            return None
        middle = key[len(prefix):len(key) - len(suffix)]
        return int(middle) if middle.isdigit() else None

    def describe(self) -> str:
        return f"{self.region or 'all regions'}, P{self.partition or '?'}"


@dataclass(frozen=True)
class RankingRecord:
    """One character ranking, reduced to the fields the matcher needs."""

    name: str
    start_time: int
    duration: int
    amount: float
    spec: Optional[str] = None
    server_name: Optional[str] = None
    server_region: Optional[str] = None
    report_code: Optional[str] = None
    fight_id: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RankingRecord":
        """Build from an API ranking row or from its cached minimal form."""
        server = raw.get("server") or {}
        report = raw.get("report") or {}
        if not isinstance(server, Mapping):
            server = {}
        if not isinstance(report, Mapping):
            report = {}
        fight_id = report.get("fightID")
        return cls(
            name=str(raw.get("name") or ""),
            start_time=_as_int(raw.get("startTime")),
            duration=_as_int(raw.get("duration")),
            amount=_as_float(raw.get("amount")),
            spec=raw.get("spec"),
            server_name=server.get("name"),
            server_region=server.get("region"),
            report_code=report.get("code"),
            fight_id=_as_int(fight_id) if fight_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        server = None
        if self.server_name is not None or self.server_region is not None:
            server = {"name": self.server_name, "region": self.server_region}
        report = None
        if self.report_code is not None:
            report = {"code": self.report_code, "fightID": self.fight_id}
        return {
            "name": self.name,
            "startTime": self.start_time,
            "duration": self.duration,
            "spec": self.spec,
            "amount": self.amount,
            "server": server,
            "report": report,
        }

    @property
    def is_anonymous(self) -> bool:
        return self.name in ANONYMOUS_NAMES

    @property
    def has_report(self) -> bool:
        return bool(self.report_code) and self.fight_id is not None


@dataclass
class RankingPage:
    """One page of a ranking list, fetched or read from cache."""

    page: int
    rankings: List[RankingRecord] = field(default_factory=list)
    has_more_pages: bool = False
    encounter_name: Optional[str] = None


@dataclass
class CacheEntry:
    """Persisted form of one ranking page."""

    rankings: List[RankingRecord]
    has_more_pages: bool
    encounter_name: str
    timestamp: float
    encounter_id: Optional[int] = None
    region: Optional[str] = None
    partition: Optional[int] = None
    partition_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rankings": [record.to_dict() for record in self.rankings],
            "has_more_pages": self.has_more_pages,
            "encounter_name": self.encounter_name,
            "timestamp": self.timestamp,
            "encounter_id": self.encounter_id,
            "region": self.region,
            "partition": self.partition,
            "partition_name": self.partition_name,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CacheEntry":
        rows = raw.get("rankings") or []
        return cls(
            rankings=[RankingRecord.from_dict(row) for row in rows if isinstance(row, Mapping)],
            has_more_pages=bool(raw.get("has_more_pages")),
            encounter_name=str(raw.get("encounter_name") or ""),
            timestamp=_as_float(raw.get("timestamp")),
            encounter_id=raw.get("encounter_id"),
            region=raw.get("region"),
            partition=raw.get("partition"),
            partition_name=raw.get("partition_name"),
        )

    def to_page(self, page: int) -> RankingPage:
        return RankingPage(
            page=page,
            rankings=list(self.rankings),
            has_more_pages=self.has_more_pages,
            encounter_name=self.encounter_name,
        )

    def display_label(self) -> str:
        partition = self.partition
        if self.partition_name and partition:
            partition_text = f"P{partition} - {self.partition_name}"
        elif partition:
            partition_text = f"P{partition}"
        else:
            partition_text = "P?"
        return f"{self.encounter_name or 'Unknown'}, {self.region or ''}, {partition_text}"


@dataclass
class QuotaState:
    """Hourly point budget as last reported by the server."""

    limit_per_hour: Optional[float] = None
    points_spent: Optional[float] = None
    reset_in_seconds: Optional[float] = None

    def update(self, payload: Mapping[str, Any]) -> None:
        self.limit_per_hour = payload.get("limitPerHour")
        self.points_spent = payload.get("pointsSpentThisHour")
        self.reset_in_seconds = payload.get("pointsResetIn")

    def clear(self) -> None:
        self.limit_per_hour = None
        self.points_spent = None
        self.reset_in_seconds = None

    def available_points(self) -> float | None:
        """Remaining points this hour, or None until the server has reported the budget."""
        if self.limit_per_hour is None or self.points_spent is None:
            return None
        return max(0.0, float(self.limit_per_hour) - float(self.points_spent))

    def reset_minutes(self) -> int:
        return math.ceil((self.reset_in_seconds or 0) / 60)


@dataclass(frozen=True)
class UsageSnapshot:
    """Live view of both rate budgets for status displays."""

    recent_requests: int
    max_requests: int
    available_slots: int
    limit_per_hour: Optional[float]
    points_spent: Optional[float]
    available_points: Optional[float]
    reset_in_seconds: Optional[float]
    waiting: bool = False


@dataclass(frozen=True)
class AnonymizedFight:
    """The fight being searched for; immutable for one search run."""

    id: int
    report_code: str
    absolute_start_time: int
    duration: int
    encounter_id: int = 0
    difficulty: int = 0
    size: int = 0
    name: str = ""

    def coordinate(self, region: str | None, partition: int | None) -> SearchCoordinate:
        return SearchCoordinate(
            encounter_id=self.encounter_id,
            difficulty=self.difficulty,
            size=self.size,
            region=region,
            partition=partition,
        )


@dataclass(frozen=True)
class MatchCandidate:
    """A ranking whose start time and duration fall inside the match thresholds."""

    record: RankingRecord
    time_diff: int
    duration_diff: int
    fight_id: int
    fight_name: str = ""


@dataclass(frozen=True)
class VerifiedMatch:
    """A public fight whose full damage distribution matched the anonymized fight.

    ``candidate`` is the first ranking that pointed at the fight; ``ranked_names``
    lists every ranked player of that fight that passed the heuristic match.
    """

    candidate: MatchCandidate
    player_count: int
    ranked_names: tuple[str, ...] = ()
    coordinate: Optional[SearchCoordinate] = None

    @property
    def record(self) -> RankingRecord:
        return self.candidate.record

    @property
    def fight_key(self) -> tuple[Optional[str], Optional[int]]:
        return self.record.report_code, self.record.fight_id
