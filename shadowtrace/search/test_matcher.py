from __future__ import annotations

import pytest

from shadowtrace.cancellation import CancellationToken
from shadowtrace.errors import ApiRequestError, SearchCancelledError
from shadowtrace.search.matcher import LogMatcher, damage_matches
from shadowtrace.types import AnonymizedFight, MatchCandidate, RankingRecord

FIGHT = AnonymizedFight(id=2, report_code="a:anon", absolute_start_time=1_000, duration=5_000, name="Ultima")


class _FakeDamageClient:
    def __init__(self, damage: dict[tuple[str, int], object]) -> None:
        self.damage = damage
        self.calls: list[tuple[str, int]] = []

    async def get_report_damage(self, code, fight_id, cancel_token=None):
        self.calls.append((code, fight_id))
        value = self.damage[(code, fight_id)]
        if isinstance(value, Exception):
            raise value
        return [{"name": f"p{i}", "amount": amount} for i, amount in enumerate(value)]


def _record(start: int, duration: int, name: str = "Someone", code: str | None = "pub", fight_id: int | None = 9):
    return RankingRecord(
        name=name, start_time=start, duration=duration, amount=1.0, report_code=code, fight_id=fight_id
    )


def _matcher(client=None) -> LogMatcher:
    return LogMatcher(FIGHT, client or _FakeDamageClient({}))


def test_identical_timing_always_matches() -> None:
    candidate = _matcher().match(_record(1_000, 5_000))

    assert candidate is not None
    assert (candidate.time_diff, candidate.duration_diff) == (0, 0)
    assert candidate.fight_id == FIGHT.id
    assert candidate.fight_name == "Ultima"


def test_close_candidate_matches_and_far_candidate_does_not() -> None:
    matcher = _matcher()

    near = matcher.match(_record(3_000, 5_100))
    far = matcher.match(_record(20_000, 5_100))

    assert near is not None
    assert (near.time_diff, near.duration_diff) == (2_000, 100)
    assert far is None


def test_start_difference_is_held_to_the_smaller_limit() -> None:
    matcher = _matcher()

    # 6s apart in start time fails even though the duration is identical.
    assert matcher.match(_record(7_000, 5_000)) is None
    # A 9s duration difference still passes when start times agree.
    assert matcher.match(_record(1_000, 14_000)) is not None
    assert matcher.match(_record(1_000, 15_000)) is None


def test_anonymous_and_reportless_rows_are_skipped() -> None:
    matcher = _matcher()

    assert matcher.match(_record(1_000, 5_000, name="Anonymous")) is None
    assert matcher.match(_record(1_000, 5_000, code=None)) is None
    assert matcher.match(_record(1_000, 5_000, fight_id=None)) is None


def test_damage_matches_within_relative_tolerance() -> None:
    assert damage_matches([100, 300, 200], [300.2, 100.05, 200], 0.001)
    assert not damage_matches([100, 300, 200], [300, 100, 201], 0.001)
    assert not damage_matches([100, 200], [100, 200, 300], 0.001)
    assert not damage_matches([], [], 0.001)
    assert damage_matches([0, 50], [50, 0], 0.001)


@pytest.mark.asyncio
async def test_verify_compares_sorted_damage_lists() -> None:
    client = _FakeDamageClient({("a:anon", 2): [100, 200, 300], ("pub", 9): [300.1, 100, 200]})
    matcher = _matcher(client)
    candidate = matcher.match(_record(1_500, 5_000))

    assert await matcher.verify(candidate, CancellationToken()) is True


@pytest.mark.asyncio
async def test_verify_rejects_different_party_size() -> None:
    client = _FakeDamageClient({("a:anon", 2): [100, 200, 300], ("pub", 9): [100, 200]})
    matcher = _matcher(client)

    assert await matcher.verify(matcher.match(_record(1_000, 5_000)), CancellationToken()) is False


@pytest.mark.asyncio
async def test_verify_failure_means_not_verified() -> None:
    client = _FakeDamageClient({("a:anon", 2): [100], ("pub", 9): ApiRequestError("gone")})
    matcher = _matcher(client)

    assert await matcher.verify(matcher.match(_record(1_000, 5_000)), CancellationToken()) is False


@pytest.mark.asyncio
async def test_verify_propagates_cancellation() -> None:
    client = _FakeDamageClient({("a:anon", 2): SearchCancelledError()})
    matcher = _matcher(client)

    with pytest.raises(SearchCancelledError):
        await matcher.verify(matcher.match(_record(1_000, 5_000)), CancellationToken())


@pytest.mark.asyncio
async def test_verify_all_fetches_anonymous_damage_once() -> None:
    client = _FakeDamageClient(
        {
            ("a:anon", 2): [10, 20],
            ("pub", 9): [20, 10],
            ("other", 4): [20, 11],
        }
    )
    matcher = _matcher(client)
    candidates: list[MatchCandidate] = [
        matcher.match(_record(1_000, 5_000, name="Good")),
        matcher.match(_record(1_000, 5_000, name="Bad", code="other", fight_id=4)),
    ]

    verified = await matcher.verify_all(candidates, CancellationToken())

    assert [v.record.name for v in verified] == ["Good"]
    assert verified[0].player_count == 2
    assert client.calls.count(("a:anon", 2)) == 1


@pytest.mark.asyncio
async def test_verify_all_checks_each_public_fight_once() -> None:
    client = _FakeDamageClient({("a:anon", 2): [10, 20], ("pub", 3): [20, 10]})
    matcher = _matcher(client)
    candidates = [
        matcher.match(_record(1_000, 5_000, name=name, fight_id=3)) for name in ("Alice", "Bob", "Cara", "Alice")
    ]

    verified = await matcher.verify_all(candidates, CancellationToken())

    assert len(verified) == 1
    assert verified[0].ranked_names == ("Alice", "Bob", "Cara")
    assert verified[0].fight_key == ("pub", 3)
    assert client.calls == [("a:anon", 2), ("pub", 3)]
