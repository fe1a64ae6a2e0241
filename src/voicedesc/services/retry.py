"""Timeouts and exponential-backoff retry for collaborator calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from voicedesc.errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    service: str,
) -> T:
    """Await a collaborator call, converting a timeout into ExternalServiceError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(
            f"{service} did not respond within {timeout:g}s",
            service=service,
            retryable=True,
            code="TIMEOUT",
        ) from e


def backoff_delay(attempt: int, base_delay: float, max_delay: float, factor: float = 2.0) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_delay``."""
    return min(base_delay * factor ** (attempt - 1), max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    factor: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or a non-retryable error occurs.

    Only :class:`ExternalServiceError` instances flagged ``retryable`` are
    retried. Anything else propagates immediately.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        max_attempts: Total attempts including the first.
        base_delay: Delay before the first retry in seconds.
        max_delay: Upper bound for any single delay.
        factor: Multiplier applied per attempt.
        sleep: Awaitable sleep, replaceable in tests.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except ExternalServiceError as e:
            if not e.retryable or attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, factor)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                e.service or "call",
                attempt,
                max_attempts,
                e.message,
                delay,
            )
            await sleep(delay)
            attempt += 1
