"""Terminal status sink: renders progress and rate-limit state on the logger's status line."""

from __future__ import annotations

from shadowtrace import logger
from shadowtrace.types import UsageSnapshot


def format_usage(usage: UsageSnapshot) -> str:
    parts = [f"Requests {usage.recent_requests}/{usage.max_requests}"]
    if usage.limit_per_hour is not None and usage.points_spent is not None:
        parts.append(f"Points {usage.points_spent:.0f}/{usage.limit_per_hour:.0f}")
    if usage.reset_in_seconds is not None:
        parts.append(f"reset in {int(usage.reset_in_seconds) // 60}m")
    return " | ".join(parts)


class ConsoleStatusSink:
    """Keeps the last headline so waiting and usage updates stay readable."""

    def __init__(self, show_usage_line: bool = False) -> None:
        self.headline = ""
        self.detail = ""
        self.show_usage_line = show_usage_line
        self.last_usage: UsageSnapshot | None = None

    def show_status(self, headline: str, detail: str = "") -> None:
        self.headline = headline
        self.detail = detail
        logger.get_logger().status(self._line())

    def show_waiting(self, seconds_remaining: int) -> None:
        logger.get_logger().status(f"{self._line()} | API limit reached, waiting {seconds_remaining}s")

    def show_usage(self, usage: UsageSnapshot) -> None:
        self.last_usage = usage
        if self.show_usage_line and not usage.waiting:
            logger.get_logger().status(f"{self._line()} | {format_usage(usage)}")

    def _line(self) -> str:
        if self.detail:
            return f"{self.headline}: {self.detail}"
        return self.headline
