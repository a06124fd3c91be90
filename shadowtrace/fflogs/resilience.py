"""Payload guards for GraphQL responses and the retry loop around data requests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from shadowtrace.cancellation import CancellationToken
from shadowtrace.errors import (
    ApiRequestError,
    DataRequestFailedError,
    QuotaExceededError,
    SearchCancelledError,
)

_T = TypeVar("_T")


def _shape_error(path: str, value: object) -> ApiRequestError:
    return ApiRequestError(f"{path} has unexpected type '{type(value).__name__}'")


def expect_dict(value: object, context: str) -> dict:
    if not isinstance(value, dict):
        raise _shape_error(context, value)
    return value


def optional_dict(container: dict, key: str, context: str) -> dict:
    """Missing and null both read as an empty object."""
    value = container.get(key)
    return {} if value is None else expect_dict(value, f"{context}.{key}")


def optional_list(container: dict, key: str, context: str) -> list:
    value = container.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise _shape_error(f"{context}.{key}", value)
    return value


def optional_list_of_dicts(container: dict, key: str, context: str) -> list[dict]:
    path = f"{context}.{key}"
    return [expect_dict(item, f"{path}[{index}]") for index, item in enumerate(optional_list(container, key, context))]


def is_retryable_exception(exc: Exception) -> bool:
    # quota and cancellation are final outcomes
    return not isinstance(exc, (QuotaExceededError, SearchCancelledError))


async def run_with_retries(
    operation: Callable[[], Awaitable[_T]],
    *,
    max_retries: int,
    delay_seconds: float,
    cancel_token: CancellationToken,
    on_retry: Callable[[int, int, float, Exception], None] | None = None,
) -> _T:
    """
    Await ``operation`` up to ``max_retries + 1`` times, sleeping ``delay_seconds`` between tries.

    The last failure is wrapped in ``DataRequestFailedError``. The token is
    checked before every attempt so a cancel during the delay stops the loop.
    """
    total = max_retries + 1
    attempt = 0
    while True:
        attempt += 1
        cancel_token.raise_if_cancelled()
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable_exception(exc):
                raise
            if attempt == total:
                raise DataRequestFailedError(exc) from exc
            if on_retry:
                on_retry(attempt, total, delay_seconds, exc)
        await asyncio.sleep(delay_seconds)
