"""Cooperative cancellation shared by one search run."""

from __future__ import annotations

from shadowtrace.errors import SearchCancelledError


class CancellationToken:
    """Flag passed down every call chain of a search and checked at suspension points."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SearchCancelledError()


def ensure_token(token: CancellationToken | None) -> CancellationToken:
    """Return ``token`` or a fresh token that is never cancelled."""
    return token if token is not None else CancellationToken()
