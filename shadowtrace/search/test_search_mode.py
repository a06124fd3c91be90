from __future__ import annotations

import asyncio

import pytest

from shadowtrace.cache.ranking_cache import RankingCache
from shadowtrace.cache.store import LocalStore
from shadowtrace.cancellation import CancellationToken
from shadowtrace.config import SearchConfig, ShadowTraceConfig
from shadowtrace.errors import ApiRequestError, DataRequestFailedError, QuotaExceededError, SearchCancelledError
from shadowtrace.search import search_mode
from shadowtrace.search.orchestrator import SearchOutcome
from shadowtrace.types import MatchCandidate, RankingPage, RankingRecord, SearchCoordinate, VerifiedMatch

REPORT = {
    "startTime": 1_000_000,
    "endTime": 9_000_000,
    "zone": {"partitions": [{"id": 1, "default": True}]},
    "fights": [
        {"id": 1, "encounterID": 77, "name": "Boss A", "startTime": 0, "endTime": 300_000, "difficulty": 100, "size": 8},
        {"id": 3, "encounterID": 78, "name": "Boss B", "startTime": 400_000, "endTime": 800_000, "difficulty": 100, "size": 8},
    ],
    "rankings": {
        "data": [{"partition": 5, "roles": {"dps": {"characters": [{"server": {"region": "JP"}}]}}}]
    },
}
OLD_COORD = SearchCoordinate(encounter_id=77, difficulty=100, size=8, region="JP", partition=5)


class _FakeReportClient:
    def __init__(self, partitions=None) -> None:
        self.partitions = partitions if partitions is not None else [{"id": 5, "name": "Standard", "compactName": "Std"}]
        self.reset_calls = 0

    def reset_usage_tracking(self) -> None:
        self.reset_calls += 1

    async def get_anonymous_report(self, code, cancel_token=None):
        return REPORT

    async def get_encounter_partitions(self, encounter_id, cancel_token=None):
        if isinstance(self.partitions, Exception):
            raise self.partitions
        return self.partitions

    async def get_report_players(self, code, fight_id, cancel_token=None):
        return [
            {"name": "Alice", "server": "Tonberry", "subType": "Scholar"},
            {"name": None},
            {"name": "Bob", "server": "Ifrit", "subType": "Bard"},
            {"name": "Cara", "server": "Ifrit", "subType": "Astrologian"},
        ]


class _FakeOrchestrator:
    """Stands in for the real orchestrator; writes one page, then returns or raises."""

    instances: list["_FakeOrchestrator"] = []
    error: BaseException | None = None

    def __init__(self, client, cache, **kwargs) -> None:
        self.cache = cache
        self.calls: list[dict] = []
        _FakeOrchestrator.instances.append(self)

    async def search(self, fights, region, partition, cancel_token, **kwargs):
        self.calls.append({"fights": [f.id for f in fights], "region": region, "partition": partition, **kwargs})
        record = RankingRecord(name="X", start_time=1, duration=2, amount=3.0, report_code="r", fight_id=1)
        coordinate = fights[0].coordinate(region, partition)
        self.cache.set(coordinate, 99, RankingPage(page=99, rankings=[record]))
        if _FakeOrchestrator.error is not None:
            raise _FakeOrchestrator.error
        return SearchOutcome(region=region, partition=partition)


@pytest.fixture
def fake_orchestrator(monkeypatch: pytest.MonkeyPatch):
    _FakeOrchestrator.instances = []
    _FakeOrchestrator.error = None
    monkeypatch.setattr(search_mode, "SearchOrchestrator", _FakeOrchestrator)
    return _FakeOrchestrator


def _cache_with_old_page() -> RankingCache:
    cache = RankingCache(LocalStore())
    record = RankingRecord(name="Old", start_time=1, duration=2, amount=3.0, report_code="o", fight_id=1)
    cache.set(OLD_COORD, 1, RankingPage(page=1, rankings=[record]))
    return cache


@pytest.mark.asyncio
async def test_successful_search_keeps_new_pages(fake_orchestrator) -> None:
    cache = _cache_with_old_page()
    client = _FakeReportClient()

    outcome = await search_mode.run_search(client, cache, ShadowTraceConfig(), "a:abc", 3)

    assert outcome.report_code == "a:abc"
    assert client.reset_calls == 1
    assert cache.search_in_progress is False
    coordinate = SearchCoordinate(encounter_id=78, difficulty=100, size=8, region="JP", partition=5)
    assert cache.get(coordinate, 99) is not None
    call = fake_orchestrator.instances[0].calls[0]
    assert call["fights"] == [3]
    assert (call["region"], call["partition"], call["partition_name"]) == ("JP", 5, "Std")
    assert call["multi_fight"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        DataRequestFailedError(ApiRequestError("down")),
        SearchCancelledError(),
        QuotaExceededError(11.0, 0.0, 30),
        asyncio.CancelledError(),
    ],
)
async def test_failed_search_rolls_back_only_its_own_pages(fake_orchestrator, error) -> None:
    fake_orchestrator.error = error
    cache = _cache_with_old_page()

    with pytest.raises(type(error)):
        await search_mode.run_search(_FakeReportClient(), cache, ShadowTraceConfig(), "a:abc", 1)

    assert cache.search_in_progress is False
    assert cache.get(OLD_COORD, 99) is None
    assert cache.get(OLD_COORD, 1) is not None
    assert cache.store.get_setting("search_in_progress") is None


@pytest.mark.asyncio
async def test_no_fight_selector_searches_every_boss_fight(fake_orchestrator) -> None:
    await search_mode.run_search(_FakeReportClient(), RankingCache(LocalStore()), ShadowTraceConfig(), "a:abc")

    call = fake_orchestrator.instances[0].calls[0]
    assert call["fights"] == [1, 3]
    assert call["multi_fight"] is True


@pytest.mark.asyncio
async def test_search_all_fights_setting_widens_a_single_fight(fake_orchestrator) -> None:
    config = ShadowTraceConfig(search=SearchConfig(search_all_fights=True))

    await search_mode.run_search(_FakeReportClient(), RankingCache(LocalStore()), config, "a:abc", "last")

    call = fake_orchestrator.instances[0].calls[0]
    assert call["fights"] == [1, 3]
    assert call["multi_fight"] is True


@pytest.mark.asyncio
async def test_refresh_clears_cached_pages_of_searched_fights(fake_orchestrator) -> None:
    cache = _cache_with_old_page()
    other = SearchCoordinate(encounter_id=77, difficulty=100, size=8, region="NA", partition=5)
    record = RankingRecord(name="Keep", start_time=1, duration=2, amount=3.0, report_code="k", fight_id=1)
    cache.set(other, 1, RankingPage(page=1, rankings=[record]))

    await search_mode.run_search(_FakeReportClient(), cache, ShadowTraceConfig(), "a:abc", 1, refresh=True)

    assert cache.get(OLD_COORD, 1) is None
    assert cache.get(OLD_COORD, 99) is not None
    assert cache.get(other, 1) is not None


@pytest.mark.asyncio
async def test_unknown_fight_is_rejected_before_searching(fake_orchestrator) -> None:
    with pytest.raises(ValueError):
        await search_mode.run_search(_FakeReportClient(), RankingCache(LocalStore()), ShadowTraceConfig(), "a:abc", 42)

    assert fake_orchestrator.instances == []


@pytest.mark.asyncio
async def test_partition_name_lookup_failure_is_not_fatal() -> None:
    client = _FakeReportClient(partitions=ApiRequestError("nope"))

    assert await search_mode.lookup_partition_name(client, 77, 5, CancellationToken()) is None
    assert await search_mode.lookup_partition_name(_FakeReportClient(), 77, None, CancellationToken()) is None
    assert await search_mode.lookup_partition_name(_FakeReportClient(), 77, 5, CancellationToken()) == "Std"


@pytest.mark.asyncio
async def test_public_fight_players_marks_found_and_matched() -> None:
    cache = _cache_with_old_page()
    record = RankingRecord(name="Bob", start_time=1, duration=2, amount=3.0, report_code="o", fight_id=1)
    cache.set(OLD_COORD, 2, RankingPage(page=2, rankings=[record]))
    twin = RankingRecord(name="Alice", start_time=0, duration=0, amount=0.0, report_code="pub", fight_id=2)
    match = VerifiedMatch(
        candidate=MatchCandidate(record=twin, time_diff=0, duration_diff=0, fight_id=1),
        player_count=8,
        ranked_names=("Alice",),
        coordinate=OLD_COORD,
    )

    players = await search_mode.public_fight_players(_FakeReportClient(), cache, match)

    assert [(p.name, p.job, p.found, p.matched) for p in players] == [
        ("Cara", "Astrologian", False, False),
        ("Bob", "Bard", True, False),
        ("Alice", "Scholar", True, True),
    ]
    assert players[1].server == "Ifrit"


@pytest.mark.asyncio
async def test_configured_default_partition_is_used_without_report_rankings(fake_orchestrator) -> None:
    payload = {**REPORT, "zone": {"partitions": [{"id": 9}]}, "rankings": {"data": []}}

    class _UnrankedClient(_FakeReportClient):
        async def get_anonymous_report(self, code, cancel_token=None):
            return payload

    config = ShadowTraceConfig(search=SearchConfig(default_partition=4))
    outcome = await search_mode.run_search(_UnrankedClient(), RankingCache(LocalStore()), config, "a:abc", 1)

    call = fake_orchestrator.instances[0].calls[0]
    assert (call["region"], call["partition"]) == (None, 4)
    assert outcome.report_start_time == 1_000_000


def test_cache_predates_report_compares_latest_page_with_report_start() -> None:
    cache = RankingCache(LocalStore(), clock=lambda: 900.0)
    record = RankingRecord(name="Old", start_time=1, duration=2, amount=3.0, report_code="o", fight_id=1)
    cache.set(OLD_COORD, 1, RankingPage(page=1, rankings=[record]))
    uncached = SearchCoordinate(encounter_id=78, difficulty=100, size=8, region="JP", partition=5)

    assert search_mode.cache_predates_report(
        cache, SearchOutcome(report_start_time=1_000_000, coordinates=[uncached, OLD_COORD])
    )
    assert not search_mode.cache_predates_report(cache, SearchOutcome(report_start_time=800_000, coordinates=[OLD_COORD]))
    assert not search_mode.cache_predates_report(cache, SearchOutcome(report_start_time=1_000_000, coordinates=[uncached]))
