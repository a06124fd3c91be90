from __future__ import annotations

import re
from typing import Optional, Union

from shadowtrace.constants import FFLOGS_REPORT_URL

FightSelector = Union[int, str, None]

_REPORT_CODE_RE = re.compile(r"reports/(a:[A-Za-z0-9]+)")
_FIGHT_RE = re.compile(r"[?#&]fight=(\d+|last)", re.IGNORECASE)


def parse_report_url(url: str) -> tuple[str, FightSelector]:
    """Return the anonymized report code and the fight selector (int, "last" or None)."""
    match = _REPORT_CODE_RE.search(url.strip())
    if not match:
        raise ValueError("Not an anonymized FFLogs report URL (expected .../reports/a:XXXX)")
    code = match.group(1)

    fight: FightSelector = None
    fight_match = _FIGHT_RE.search(url)
    if fight_match:
        raw = fight_match.group(1)
        fight = "last" if raw.lower() == "last" else int(raw)
    return code, fight


def report_url(code: str, fight_id: Optional[int] = None) -> str:
    url = f"{FFLOGS_REPORT_URL}/{code}"
    if fight_id is not None:
        url += f"#fight={fight_id}"
    return url
