"""Two-stage match of ranking records against the anonymized fight."""

from __future__ import annotations

from typing import Optional, Sequence

from shadowtrace import logger
from shadowtrace.cancellation import CancellationToken
from shadowtrace.constants import DURATION_DIFF_MS, RDPS_DIFF_RATIO, TIME_DIFF_MS
from shadowtrace.errors import SearchCancelledError
from shadowtrace.fflogs.client import FFLogsClient
from shadowtrace.types import AnonymizedFight, MatchCandidate, RankingRecord, SearchCoordinate, VerifiedMatch


def damage_matches(anonymous: Sequence[float], public: Sequence[float], ratio: float) -> bool:
    """Compare two damage lists sorted high to low, pair by pair, within a relative tolerance."""
    left = sorted((float(value) for value in anonymous), reverse=True)
    right = sorted((float(value) for value in public), reverse=True)
    if not left or len(left) != len(right):
        return False
    for expected, actual in zip(left, right):
        if expected == 0:
            if actual != 0:
                return False
            continue
        if abs(expected - actual) / expected > ratio:
            return False
    return True


class LogMatcher:
    def __init__(
        self,
        fight: AnonymizedFight,
        client: FFLogsClient,
        *,
        time_diff_ms: int = TIME_DIFF_MS,
        duration_diff_ms: int = DURATION_DIFF_MS,
        rdps_diff_ratio: float = RDPS_DIFF_RATIO,
        coordinate: Optional[SearchCoordinate] = None,
    ) -> None:
        self.fight = fight
        self.client = client
        self.coordinate = coordinate
        self.time_diff_ms = time_diff_ms
        self.duration_diff_ms = duration_diff_ms
        self.rdps_diff_ratio = rdps_diff_ratio
        self._anonymous_damage: list[float] | None = None

    def match(self, record: RankingRecord) -> Optional[MatchCandidate]:
        if record.is_anonymous or not record.has_report:
            return None

        time_diff = abs(record.start_time - self.fight.absolute_start_time)
        duration_diff = abs(record.duration - self.fight.duration)

        # Start time is held to the duration limit and duration to the time limit.
        if time_diff < self.duration_diff_ms and duration_diff < self.time_diff_ms:
            return MatchCandidate(
                record=record,
                time_diff=time_diff,
                duration_diff=duration_diff,
                fight_id=self.fight.id,
                fight_name=self.fight.name,
            )
        return None

    async def _anonymous_amounts(self, cancel_token: CancellationToken) -> list[float]:
        if self._anonymous_damage is None:
            rows = await self.client.get_report_damage(
                self.fight.report_code, self.fight.id, cancel_token=cancel_token
            )
            self._anonymous_damage = [float(row["amount"]) for row in rows]
        return self._anonymous_damage

    async def verify(self, candidate: MatchCandidate, cancel_token: CancellationToken) -> bool:
        """Cross-check the full damage distribution; any failure means not verified."""
        record = candidate.record
        try:
            anonymous = await self._anonymous_amounts(cancel_token)
            if not anonymous:
                return False
            rows = await self.client.get_report_damage(
                record.report_code, record.fight_id, cancel_token=cancel_token
            )
            public = [float(row["amount"]) for row in rows]
        except SearchCancelledError:
            raise
        except Exception as exc:
            logger.debug(f"Damage check for {record.report_code}#{record.fight_id} failed: {exc}")
            return False

        return damage_matches(anonymous, public, self.rdps_diff_ratio)

    async def verify_all(
        self, candidates: Sequence[MatchCandidate], cancel_token: CancellationToken
    ) -> list[VerifiedMatch]:
        """Verify each public fight once, however many of its players were ranked."""
        groups: dict[tuple[Optional[str], Optional[int]], list[MatchCandidate]] = {}
        for candidate in candidates:
            groups.setdefault((candidate.record.report_code, candidate.record.fight_id), []).append(candidate)

        verified: list[VerifiedMatch] = []
        for (code, fight_id), group in groups.items():
            names = tuple(dict.fromkeys(c.record.name for c in group))
            if await self.verify(group[0], cancel_token):
                logger.info(f"Match verified: {', '.join(names)} in {code}#{fight_id}")
                verified.append(
                    VerifiedMatch(
                        candidate=group[0],
                        player_count=len(self._anonymous_damage or []),
                        ranked_names=names,
                        coordinate=self.coordinate,
                    )
                )
            else:
                logger.info(f"Candidate {', '.join(names)} in {code}#{fight_id} not verified")
        return verified
