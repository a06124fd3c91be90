"""Exception types raised by the search engine."""

from __future__ import annotations


class ShadowTraceError(Exception):
    """Base class for all engine errors."""


class ApiRequestError(ShadowTraceError):
    """A remote call failed: HTTP error, GraphQL error or malformed payload."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class QuotaExceededError(ShadowTraceError):
    """The hourly point budget cannot cover the request; raised before any network call."""

    def __init__(self, required_points: float, available_points: float, reset_minutes: int) -> None:
        self.required_points = required_points
        self.available_points = available_points
        self.reset_minutes = reset_minutes
        super().__init__(
            f"Point budget exhausted: about {required_points:.1f} points needed but only "
            f"{available_points:.1f} left (resets in {reset_minutes} min)"
        )


class SearchCancelledError(ShadowTraceError):
    """The search was cancelled through its cancellation token."""

    def __init__(self, message: str = "Search cancelled.") -> None:
        super().__init__(message)


class DataRequestFailedError(ShadowTraceError):
    """A ranking batch kept failing after every retry; the whole search stops."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Data request failed: {cause}. Search aborted.")
