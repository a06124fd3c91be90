"""GraphQL documents for the FFLogs v2 client API."""

from __future__ import annotations

from typing import Iterable

from shadowtrace.types import SearchCoordinate

RATE_LIMIT_FIELDS = """
    rateLimitData {
        limitPerHour
        pointsSpentThisHour
        pointsResetIn
    }
"""

USAGE_QUERY = f"query {{{RATE_LIMIT_FIELDS}}}"

ANONYMOUS_REPORT_QUERY = f"""
query($code: String!) {{
    reportData {{
        report(code: $code) {{
            startTime
            endTime
            zone {{
                id
                name
                partitions {{
                    id
                    name
                    compactName
                    default
                }}
            }}
            fights {{
                id
                encounterID
                name
                startTime
                endTime
                difficulty
                size
                kill
                fightPercentage
                friendlyPlayers
            }}
            masterData {{
                actors(type: "Player") {{
                    id
                    name
                    server
                    type
                    subType
                }}
            }}
            rankings
        }}
    }}
    {RATE_LIMIT_FIELDS}
}}
"""


def encounter_partitions_query(encounter_id: int) -> str:
    return f"""
query {{
    worldData {{
        encounter(id: {int(encounter_id)}) {{
            zone {{
                partitions {{
                    id
                    name
                    compactName
                }}
            }}
        }}
    }}
    {RATE_LIMIT_FIELDS}
}}
"""


def report_players_query(fight_id: int) -> str:
    return f"""
query($code: String!) {{
    reportData {{
        report(code: $code) {{
            fights(fightIDs: [{int(fight_id)}]) {{
                id
                friendlyPlayers
            }}
            masterData {{
                actors(type: "Player") {{
                    id
                    name
                    server
                    type
                    subType
                }}
            }}
        }}
    }}
    {RATE_LIMIT_FIELDS}
}}
"""


def report_damage_query(fight_id: int) -> str:
    return f"""
query($code: String!) {{
    reportData {{
        report(code: $code) {{
            table(fightIDs: [{int(fight_id)}], dataType: DamageDone)
        }}
    }}
    {RATE_LIMIT_FIELDS}
}}
"""


def page_alias(page: int) -> str:
    return f"page{int(page)}"


def _character_rankings_args(coordinate: SearchCoordinate, page: int) -> str:
    args = [
        f"difficulty: {int(coordinate.difficulty)}",
        "metric: rdps",
        f"size: {int(coordinate.size)}",
        f"page: {int(page)}",
    ]
    if coordinate.region:
        args.append(f'serverRegion: "{coordinate.region}"')
    if coordinate.partition:
        args.append(f"partition: {int(coordinate.partition)}")
    return ", ".join(args)


def rankings_batch_query(coordinate: SearchCoordinate, pages: Iterable[int]) -> str:
    """One query returning every requested page under its own ``pageN`` alias."""
    aliased = "\n".join(
        f"""
        {page_alias(page)}: encounter(id: {int(coordinate.encounter_id)}) {{
            name
            characterRankings({_character_rankings_args(coordinate, page)})
        }}"""
        for page in pages
    )
    return f"""
query {{
    worldData {{{aliased}
    }}
    {RATE_LIMIT_FIELDS}
}}
"""
