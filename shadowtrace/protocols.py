"""Protocol definitions for the presentation collaborators the engine calls."""

from __future__ import annotations

from typing import Protocol

from shadowtrace.types import UsageSnapshot


class StatusSink(Protocol):
    """Receives progress text and rate-limit state; never queried back."""

    def show_status(self, headline: str, detail: str = "") -> None:
        ...

    def show_waiting(self, seconds_remaining: int) -> None:
        ...

    def show_usage(self, usage: UsageSnapshot) -> None:
        ...


class ConfirmSink(Protocol):
    """Asks the user a yes/no question."""

    def __call__(self, title: str, message: str) -> bool:
        ...


class NullStatusSink:
    """Status sink that discards everything."""

    def show_status(self, headline: str, detail: str = "") -> None:
        return None

    def show_waiting(self, seconds_remaining: int) -> None:
        return None

    def show_usage(self, usage: UsageSnapshot) -> None:
        return None
