"""Central API rate-limit settings and the shared short-term request tracker."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, Protocol

# FFLogs v2: request-count budget over a sliding window, plus an hourly point budget.
WINDOW_SECONDS = 120.0
MAX_REQUESTS = 240
SAFETY_MARGIN_SECONDS = 1.0
POINTS_PER_REQUEST = 1.1
WAIT_LOG_THRESHOLD_SECONDS = 5.0

REQUEST_HISTORY_KEY = "request_history"


class SettingsStore(Protocol):
    """Minimal persistence API used for the request history."""

    def get_setting(self, key: str) -> str | None:
        ...

    def set_setting(self, key: str, value: str) -> None:
        ...


@dataclass
class RequestRecord:
    timestamp: float
    count: int


class RateWindowTracker:
    """
    Sliding-window counter of network calls.

    One instance is shared by every client that talks to the same store; the
    history is persisted so a restart does not forget recent usage.
    """

    def __init__(
        self,
        store: SettingsStore | None = None,
        *,
        window_seconds: float = WINDOW_SECONDS,
        max_requests: int = MAX_REQUESTS,
        safety_margin_seconds: float = SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.window_seconds = float(window_seconds)
        self.max_requests = int(max_requests)
        self.safety_margin_seconds = float(safety_margin_seconds)
        self._clock = clock
        self._history: list[RequestRecord] = self._load_history()

    def _load_history(self) -> list[RequestRecord]:
        if self._store is None:
            return []
        raw = self._store.get_setting(REQUEST_HISTORY_KEY)
        if not raw:
            return []
        try:
            rows = json.loads(raw)
            records = [RequestRecord(float(row["timestamp"]), int(row["count"])) for row in rows]
        except (ValueError, TypeError, KeyError):
            return []
        cutoff = self._clock() - self.window_seconds
        return [record for record in records if record.timestamp > cutoff]

    def _save_history(self) -> None:
        if self._store is None:
            return
        payload = [{"timestamp": r.timestamp, "count": r.count} for r in self._history]
        self._store.set_setting(REQUEST_HISTORY_KEY, json.dumps(payload))

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        kept = [record for record in self._history if record.timestamp > cutoff]
        if len(kept) != len(self._history):
            self._history = kept
            self._save_history()

    @property
    def history(self) -> list[RequestRecord]:
        return list(self._history)

    def record(self, count: int = 1) -> None:
        self._history.append(RequestRecord(self._clock(), int(count)))
        self._save_history()

    def recent_usage(self) -> int:
        """Sum of counts recorded within the window; older records are dropped."""
        self._prune(self._clock())
        return sum(record.count for record in self._history)

    def available_slots(self) -> int:
        return max(0, self.max_requests - self.recent_usage())

    def wait_time_for(self, needed_slots: int = 1) -> float:
        """Seconds until ``needed_slots`` are free, including the safety margin; 0 if already free."""
        available = self.available_slots()
        if not self._history or available >= needed_slots:
            return 0.0

        now = self._clock()
        need_to_free = needed_slots - available
        freed = 0
        target: RequestRecord | None = None
        for record in self._history:
            freed += record.count
            if freed >= need_to_free:
                target = record
                break

        # More slots than the window can ever hold: wait for the whole window to roll over.
        if target is None:
            target = self._history[-1]

        elapsed = now - target.timestamp
        return max(0.0, self.window_seconds - elapsed) + self.safety_margin_seconds
