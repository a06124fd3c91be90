"""Ranking page retrieval: cache-first batch fetching with retries, and last-page discovery."""

from __future__ import annotations

from typing import Any, Optional

from shadowtrace import logger
from shadowtrace.cache.ranking_cache import RankingCache
from shadowtrace.cancellation import CancellationToken
from shadowtrace.constants import MAX_PAGES, MAX_RETRIES, RETRY_DELAY_SECONDS
from shadowtrace.errors import DataRequestFailedError, SearchCancelledError
from shadowtrace.fflogs import queries
from shadowtrace.fflogs.client import FFLogsClient
from shadowtrace.fflogs.resilience import optional_dict, run_with_retries
from shadowtrace.types import RankingPage, RankingRecord, SearchCoordinate

STOP = 0


def compute_batch_size(
    max_batch_size: int,
    point_budget_pages: int,
    known_remaining: int,
    estimated_remaining: int,
) -> int:
    """Pages to request in the next round; ``STOP`` when any bound is exhausted."""
    size = min(max_batch_size, point_budget_pages, known_remaining, estimated_remaining)
    return size if size > 0 else STOP


def parse_rankings_page(page: int, encounter: Any) -> Optional[RankingPage]:
    """Turn one aliased ``encounter`` result into a page; None when the alias is missing."""
    if not isinstance(encounter, dict):
        return None
    rankings = encounter.get("characterRankings")
    if not isinstance(rankings, dict):
        return None
    rows = rankings.get("rankings")
    if not isinstance(rows, list):
        return None
    return RankingPage(
        page=page,
        rankings=[RankingRecord.from_dict(row) for row in rows if isinstance(row, dict)],
        has_more_pages=bool(rankings.get("hasMorePages")),
        encounter_name=encounter.get("name"),
    )


class RankingFetcher:
    """Reads ranking pages for one coordinate, from cache when possible."""

    def __init__(
        self,
        client: FFLogsClient,
        cache: RankingCache,
        *,
        max_pages: int = MAX_PAGES,
        max_retries: int = MAX_RETRIES,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self.client = client
        self.cache = cache
        self.max_pages = int(max_pages)
        self.max_retries = int(max_retries)
        self.retry_delay_seconds = float(retry_delay_seconds)

    async def fetch_batch(
        self,
        coordinate: SearchCoordinate,
        start_page: int,
        page_count: int,
        cancel_token: CancellationToken,
        partition_name: str | None = None,
    ) -> list[RankingPage]:
        """
        Return pages ``start_page .. start_page + page_count - 1`` in page order.

        Cached pages are read directly; the rest go out as one aliased query.
        Pages the server returned without an alias are left out of the result.
        """
        cached: list[RankingPage] = []
        missing: list[int] = []
        for page in range(start_page, start_page + page_count):
            entry = self.cache.get(coordinate, page)
            if entry is not None:
                cached.append(entry.to_page(page))
            else:
                missing.append(page)

        if not missing:
            return cached

        data = await self.client.query(
            queries.rankings_batch_query(coordinate, missing),
            request_count=len(missing),
            cancel_token=cancel_token,
        )
        world = optional_dict(data, "worldData", "data")

        cancel_token.raise_if_cancelled()
        fetched: list[RankingPage] = []
        for page in missing:
            parsed = parse_rankings_page(page, world.get(queries.page_alias(page)))
            if parsed is None:
                logger.debug(f"Page {page} missing from batch response for {coordinate.describe()}")
                continue
            self.cache.set(coordinate, page, parsed, parsed.encounter_name, partition_name)
            fetched.append(parsed)

        return sorted(cached + fetched, key=lambda ranking_page: ranking_page.page)

    async def fetch_page(
        self,
        coordinate: SearchCoordinate,
        page: int,
        cancel_token: CancellationToken,
        partition_name: str | None = None,
    ) -> RankingPage:
        pages = await self.fetch_batch(coordinate, page, 1, cancel_token, partition_name)
        return pages[0] if pages else RankingPage(page=page)

    async def fetch_batch_with_retries(
        self,
        coordinate: SearchCoordinate,
        start_page: int,
        page_count: int,
        cancel_token: CancellationToken,
        partition_name: str | None = None,
    ) -> list[RankingPage]:
        what = f"Ranking pages {start_page}-{start_page + page_count - 1}"
        attempts = self.max_retries + 1

        def _on_retry(attempt: int, max_attempts: int, delay: float, exc: Exception) -> None:
            logger.debug(f"{what} attempt {attempt} error: {exc}")
            logger.get_logger().api_retry(what, attempt, max_attempts, delay)

        try:
            return await run_with_retries(
                lambda: self.fetch_batch(coordinate, start_page, page_count, cancel_token, partition_name),
                max_retries=self.max_retries,
                delay_seconds=self.retry_delay_seconds,
                cancel_token=cancel_token,
                on_retry=_on_retry,
            )
        except DataRequestFailedError:
            logger.get_logger().api_failed(what, attempts)
            raise

    async def find_max_pages(
        self,
        coordinate: SearchCoordinate,
        cancel_token: CancellationToken,
        partition_name: str | None = None,
    ) -> int:
        """Binary search for the highest page that still has rankings."""
        low, high = 1, self.max_pages
        max_valid_page = 1
        while low <= high:
            mid = (low + high) // 2
            try:
                ranking_page = await self.fetch_page(coordinate, mid, cancel_token, partition_name)
                has_rankings = bool(ranking_page.rankings)
            except SearchCancelledError:
                raise
            except Exception as exc:
                # A failed probe only narrows the range.
                logger.debug(f"Probe of page {mid} failed, treating as empty: {exc}")
                has_rankings = False

            if has_rankings:
                max_valid_page = mid
                low = mid + 1
            else:
                high = mid - 1

        logger.debug(f"Last ranking page for {coordinate.describe()}: {max_valid_page}")
        return max_valid_page
