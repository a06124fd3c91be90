"""Drives discovery, batch fetching and matching across the fights of one search."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from shadowtrace import logger
from shadowtrace.cache.ranking_cache import RankingCache
from shadowtrace.cancellation import CancellationToken
from shadowtrace.config import MatchingConfig, SearchConfig
from shadowtrace.fflogs.client import FFLogsClient
from shadowtrace.protocols import NullStatusSink, StatusSink
from shadowtrace.search.matcher import LogMatcher
from shadowtrace.search.rankings import STOP, RankingFetcher, compute_batch_size
from shadowtrace.types import AnonymizedFight, MatchCandidate, SearchCoordinate, VerifiedMatch

ProgressCallback = Callable[[AnonymizedFight, list[VerifiedMatch]], None]


@dataclass
class SearchOutcome:
    matches: list[VerifiedMatch] = field(default_factory=list)
    matched_fight: Optional[AnonymizedFight] = None
    fights_searched: int = 0
    candidates_found: int = 0
    report_code: str = ""
    region: Optional[str] = None
    partition: Optional[int] = None
    partition_name: Optional[str] = None
    report_start_time: int = 0
    coordinates: list[SearchCoordinate] = field(default_factory=list)


def partition_text(partition: Optional[int], partition_name: Optional[str]) -> str:
    if partition and partition_name:
        return f"P{partition} - {partition_name}"
    return f"P{partition}" if partition else "P?"


class SearchOrchestrator:
    def __init__(
        self,
        client: FFLogsClient,
        cache: RankingCache,
        *,
        search: SearchConfig | None = None,
        matching: MatchingConfig | None = None,
        status: StatusSink | None = None,
        fetcher: RankingFetcher | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.search_config = search or SearchConfig()
        self.matching = matching or MatchingConfig()
        self.status: StatusSink = status or NullStatusSink()
        self.fetcher = fetcher or RankingFetcher(
            client,
            cache,
            max_pages=self.search_config.max_pages,
            max_retries=self.search_config.max_retries,
            retry_delay_seconds=self.search_config.retry_delay_seconds,
        )

    def order_fights(
        self, fights: Sequence[AnonymizedFight], region: Optional[str], partition: Optional[int]
    ) -> list[AnonymizedFight]:
        """Fights with cached pages first, original order kept within each group."""
        with_cache = [f for f in fights if self.cache.has_cache_for_fight(f.coordinate(region, partition))]
        without_cache = [f for f in fights if f not in with_cache]
        return with_cache + without_cache

    def _point_budget_pages(self) -> int:
        available = self.client.available_points()
        pages = int(available // self.client.points_per_request) if available is not None else 0
        # An exhausted budget does not bound the round; the client refuses uncached pages on its own.
        return pages if pages > 0 else self.search_config.max_pages

    async def search(
        self,
        fights: Sequence[AnonymizedFight],
        region: Optional[str],
        partition: Optional[int],
        cancel_token: CancellationToken,
        *,
        partition_name: Optional[str] = None,
        multi_fight: bool = False,
        progress_callback: ProgressCallback | None = None,
    ) -> SearchOutcome:
        outcome = SearchOutcome(region=region, partition=partition, partition_name=partition_name)
        ordered = self.order_fights(fights, region, partition)
        total = len(ordered)
        location = f"{region or 'all regions'}, {partition_text(partition, partition_name)}"

        for index, fight in enumerate(ordered, start=1):
            cancel_token.raise_if_cancelled()
            progress = f" [{index}/{total}]" if total > 1 else ""
            label = f"{fight.name}{progress} ({location})"
            coordinate = fight.coordinate(region, partition)
            if coordinate not in outcome.coordinates:
                outcome.coordinates.append(coordinate)

            matcher = self._matcher(fight, coordinate)
            candidates = await self._collect_candidates(matcher, coordinate, label, cancel_token, partition_name)
            outcome.fights_searched += 1
            outcome.candidates_found += len(candidates)
            if not candidates:
                logger.info(f"{fight.name}: no candidates found")
                continue

            self.status.show_status(label, "Verifying matches...")
            verified = await matcher.verify_all(candidates, cancel_token)
            if not verified:
                continue

            outcome.matches.extend(verified)
            if outcome.matched_fight is None:
                outcome.matched_fight = fight
            if multi_fight:
                if progress_callback is not None:
                    progress_callback(fight, verified)
            else:
                return outcome

        return outcome

    def _matcher(self, fight: AnonymizedFight, coordinate: SearchCoordinate) -> LogMatcher:
        return LogMatcher(
            fight,
            self.client,
            coordinate=coordinate,
            time_diff_ms=self.matching.time_diff_ms,
            duration_diff_ms=self.matching.duration_diff_ms,
            rdps_diff_ratio=self.matching.rdps_diff_ratio,
        )

    async def _collect_candidates(
        self,
        matcher: LogMatcher,
        coordinate: SearchCoordinate,
        label: str,
        cancel_token: CancellationToken,
        partition_name: Optional[str],
    ) -> list[MatchCandidate]:
        has_cache = self.cache.has_cache_for_fight(coordinate)
        if has_cache:
            max_page = self.cache.get_cached_max_page(coordinate) or 1
            self.status.show_status(label, "Matching cached pages...")
        else:
            self.status.show_status(label, "Counting ranking pages...")
            max_page = await self.fetcher.find_max_pages(coordinate, cancel_token, partition_name)

        candidates: list[MatchCandidate] = []
        page = 1
        has_more_pages = True
        while has_more_pages and page <= self.search_config.max_pages:
            batch_size = compute_batch_size(
                self.search_config.max_batch_size,
                self._point_budget_pages(),
                max_page - page + 1,
                self.search_config.max_pages - page + 1,
            )
            if batch_size == STOP:
                break

            last_page = page + batch_size - 1
            if not has_cache:
                self.status.show_status(label, f"Ranking pages {page}-{last_page}/{max_page} [batch: {batch_size}]")
            pages = await self.fetcher.fetch_batch_with_retries(
                coordinate, page, batch_size, cancel_token, partition_name
            )
            if not pages:
                break

            for ranking_page in pages:
                for record in ranking_page.rankings:
                    candidate = matcher.match(record)
                    if candidate is None:
                        continue
                    logger.info(
                        f"Candidate found: {record.name} ({record.report_code}#{record.fight_id}), "
                        f"start diff {candidate.time_diff}ms, duration diff {candidate.duration_diff}ms"
                    )
                    candidates.append(candidate)

            # Only the last requested page decides whether the list goes on.
            tail = pages[-1]
            has_more_pages = tail.page == last_page and tail.has_more_pages
            page += batch_size

        return candidates
