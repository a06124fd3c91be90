"""Search mode: resolve an anonymized report and look for its public counterpart."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from shadowtrace import logger
from shadowtrace.cache.ranking_cache import RankingCache
from shadowtrace.cancellation import CancellationToken, ensure_token
from shadowtrace.config import ShadowTraceConfig
from shadowtrace.errors import ApiRequestError
from shadowtrace.fflogs.client import FFLogsClient
from shadowtrace.protocols import NullStatusSink, StatusSink
from shadowtrace.search.orchestrator import ProgressCallback, SearchOrchestrator, SearchOutcome, partition_text
from shadowtrace.search.report import Report
from shadowtrace.search.url_utils import FightSelector
from shadowtrace.types import VerifiedMatch


async def lookup_partition_name(
    client: FFLogsClient,
    encounter_id: int,
    partition: Optional[int],
    cancel_token: CancellationToken,
) -> Optional[str]:
    """Short partition label for display; None when it cannot be resolved."""
    if partition is None:
        return None
    try:
        partitions = await client.get_encounter_partitions(encounter_id, cancel_token=cancel_token)
    except ApiRequestError as exc:
        logger.warning(f"Could not load partition names for encounter {encounter_id}: {exc}")
        return None
    for entry in partitions:
        if entry.get("id") == partition:
            return entry.get("compactName") or entry.get("name")
    return None


async def run_search(
    client: FFLogsClient,
    cache: RankingCache,
    config: ShadowTraceConfig,
    report_code: str,
    fight: FightSelector = None,
    *,
    cancel_token: CancellationToken | None = None,
    status: StatusSink | None = None,
    progress_callback: ProgressCallback | None = None,
    refresh: bool = False,
) -> SearchOutcome:
    token = ensure_token(cancel_token)
    status = status or NullStatusSink()

    cache.init()
    client.reset_usage_tracking()

    status.show_status("Report", f"Loading {report_code}...")
    payload = await client.get_anonymous_report(report_code, cancel_token=token)
    report = Report.from_payload(report_code, payload)

    selected = report.select_fights(fight)
    if not selected:
        raise ValueError("No boss fights found in this report.")
    search_all = config.search.search_all_fights
    if fight is not None and search_all:
        selected = report.boss_fights()
    multi_fight = fight is None or search_all

    region = report.detect_region()
    partition = report.detect_partition(
        region,
        kr_partition=config.search.kr_partition,
        default_partition=config.search.default_partition,
    )
    status.show_status("Partition", "Loading partition names...")
    partition_name = await lookup_partition_name(client, int(selected[0]["encounterID"]), partition, token)
    fights = [report.to_anonymized_fight(entry) for entry in selected]
    logger.info(
        f"Searching {len(fights)} fight(s) of {report_code} "
        f"({region or 'all regions'}, {partition_text(partition, partition_name)})"
    )

    if refresh:
        for coordinate in {f.coordinate(region, partition) for f in fights}:
            removed = cache.clear_coordinate(coordinate)
            logger.info(f"Refresh: removed {removed} cached page(s) for encounter {coordinate.encounter_id}")

    orchestrator = SearchOrchestrator(
        client,
        cache,
        search=config.search,
        matching=config.matching,
        status=status,
    )

    cache.start_search()
    try:
        outcome = await orchestrator.search(
            fights,
            region,
            partition,
            token,
            partition_name=partition_name,
            multi_fight=multi_fight,
            progress_callback=progress_callback,
        )
    except (Exception, asyncio.CancelledError):
        cache.abort_search()
        raise
    cache.finish_search()

    outcome.report_code = report_code
    outcome.report_start_time = report.start_time
    return outcome


def cache_predates_report(cache: RankingCache, outcome: SearchOutcome) -> bool:
    """True when a searched ranking list was last cached before the report started."""
    report_start = outcome.report_start_time / 1000
    for coordinate in outcome.coordinates:
        latest = cache.get_latest_cache_timestamp(coordinate)
        if latest is not None and report_start > latest:
            return True
    return False


@dataclass(frozen=True)
class FightPlayer:
    name: str
    server: Optional[str] = None
    job: Optional[str] = None
    found: bool = False
    matched: bool = False


async def public_fight_players(
    client: FFLogsClient,
    cache: RankingCache,
    match: VerifiedMatch,
    cancel_token: CancellationToken | None = None,
) -> list[FightPlayer]:
    """
    Players of the public fight a match points to.

    ``found`` marks names present in the cached rankings of the searched list,
    ``matched`` the ranked players that led to this fight.
    """
    record = match.record
    actors: list[dict[str, Any]] = await client.get_report_players(
        record.report_code, record.fight_id, cancel_token=cancel_token
    )
    found_names = cache.get_all_cached_players(match.coordinate) if match.coordinate is not None else set()
    matched_names = set(match.ranked_names or (record.name,))

    players = []
    for actor in actors:
        name = actor.get("name")
        if not name:
            continue
        name = str(name)
        players.append(
            FightPlayer(
                name=name,
                server=actor.get("server"),
                job=actor.get("subType") or actor.get("type"),
                found=name in found_names or name in matched_names,
                matched=name in matched_names,
            )
        )
    players.sort(key=lambda p: (p.job or "", p.name))
    return players
