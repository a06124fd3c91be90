"""Anonymized report wrapper: region/partition detection and fight selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from shadowtrace.constants import DEFAULT_PARTITION, KR_PARTITION
from shadowtrace.search.url_utils import FightSelector
from shadowtrace.types import AnonymizedFight


@dataclass
class Report:
    code: str
    start_time: int
    end_time: int
    zone: dict[str, Any] = field(default_factory=dict)
    fights: list[dict[str, Any]] = field(default_factory=list)
    rankings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, code: str, payload: Mapping[str, Any]) -> "Report":
        zone = payload.get("zone")
        rankings = payload.get("rankings")
        return cls(
            code=code,
            start_time=int(payload.get("startTime") or 0),
            end_time=int(payload.get("endTime") or 0),
            zone=zone if isinstance(zone, dict) else {},
            fights=[f for f in payload.get("fights") or [] if isinstance(f, dict)],
            rankings=rankings if isinstance(rankings, dict) else {},
        )

    def _ranking_rows(self) -> list[dict[str, Any]]:
        rows = self.rankings.get("data")
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    def detect_region(self) -> Optional[str]:
        """Server region of the first ranked character, if the report carries rankings."""
        rows = self._ranking_rows()
        if not rows:
            return None
        roles = rows[0].get("roles") or {}
        for role in roles.values():
            characters = role.get("characters") if isinstance(role, dict) else None
            if not characters:
                continue
            server = characters[0].get("server") or {}
            if server.get("region"):
                return server["region"]
        return None

    def detect_partition(
        self,
        region: Optional[str],
        *,
        kr_partition: int = KR_PARTITION,
        default_partition: int = DEFAULT_PARTITION,
    ) -> Optional[int]:
        """Partition of the report's own rankings, else the KR partition or the zone default."""
        rows = self._ranking_rows()
        if rows:
            return rows[0].get("partition")
        if region == "KR":
            return kr_partition
        partitions = self.zone.get("partitions")
        if partitions:
            default = next((p for p in partitions if p.get("default")), None)
            return (default or {}).get("id") or default_partition
        return None

    def boss_fights(self) -> list[dict[str, Any]]:
        return [fight for fight in self.fights if int(fight.get("encounterID") or 0) > 0]

    def select_fights(self, fight: FightSelector = None) -> list[dict[str, Any]]:
        bosses = self.boss_fights()
        if fight is None:
            return bosses
        if fight == "last":
            if not bosses:
                raise ValueError("No boss fights found in this report.")
            return [bosses[-1]]
        try:
            fight_id = int(fight)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid fight selector: {fight!r}") from exc
        for candidate in bosses:
            if candidate.get("id") == fight_id:
                return [candidate]
        raise ValueError(f"Fight {fight_id} was not found in this report.")

    def to_anonymized_fight(self, fight: Mapping[str, Any]) -> AnonymizedFight:
        start = int(fight.get("startTime") or 0)
        end = int(fight.get("endTime") or 0)
        return AnonymizedFight(
            id=int(fight["id"]),
            report_code=self.code,
            absolute_start_time=self.start_time + start,
            duration=end - start,
            encounter_id=int(fight.get("encounterID") or 0),
            difficulty=int(fight.get("difficulty") or 0),
            size=int(fight.get("size") or 0),
            name=str(fight.get("name") or ""),
        )
