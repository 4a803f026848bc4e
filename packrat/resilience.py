"""Shared resilience helpers for transient index failures and payload guards."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from aiohttp import ClientConnectionError, ClientResponseError, ServerTimeoutError

RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}
THROTTLE_SHAPE_HINT = "possible rate-limit/throttle response"

_T = TypeVar("_T")


def expect_dict(value: object, context: str) -> dict:
    if isinstance(value, dict):
        return value
    value_type = type(value).__name__
    raise ValueError(f"{context} has unexpected type '{value_type}' ({THROTTLE_SHAPE_HINT})")


def expect_list_of_dicts(value: object, context: str) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list):
        value_type = type(value).__name__
        raise ValueError(f"{context} has unexpected type '{value_type}' ({THROTTLE_SHAPE_HINT})")
    return [expect_dict(item, f"{context}[{idx}]") for idx, item in enumerate(value)]


def retry_delay_seconds(*, attempt: int, retry_after: str | None) -> int:
    """Backoff for a zero-based attempt, preferring a positive Retry-After header."""
    if retry_after:
        try:
            value = int(float(retry_after))
        except (TypeError, ValueError):
            value = 0
        if value > 0:
            return value
    return 2 ** (attempt + 1)


def is_retryable_exception(exc: Exception) -> bool:
    return (
        isinstance(exc, (asyncio.TimeoutError, ClientConnectionError, ServerTimeoutError))
        or (isinstance(exc, ClientResponseError) and exc.status in RETRYABLE_HTTP_STATUSES)
        or (isinstance(exc, ValueError) and THROTTLE_SHAPE_HINT in str(exc).lower())
    )


async def run_with_retries(
    operation: Callable[[], Awaitable[_T]],
    *,
    max_attempts: int,
    on_retry: Callable[[int, int, int, Exception], None] | None = None,
) -> _T:
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_attempts or not is_retryable_exception(exc):
                raise
            delay = 2 ** attempt
            if on_retry is not None:
                on_retry(attempt, max_attempts, delay, exc)
            await asyncio.sleep(delay)
    raise RuntimeError("Unreachable retry exit")
