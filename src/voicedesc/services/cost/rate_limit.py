"""Async token bucket for pacing metered backend calls."""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class TokenBucket:
    """Refills ``rate_per_minute`` tokens per minute up to ``capacity``.

    :meth:`acquire` waits until enough tokens are available. Requests larger
    than the capacity are clamped to it so they cannot wait forever.
    """

    def __init__(self, rate_per_minute: float, capacity: float | None = None) -> None:
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.rate_per_second = rate_per_minute / 60.0
        self.capacity = float(capacity if capacity is not None else rate_per_minute)
        self._tokens = self.capacity
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate_per_second)
        self._updated = now

    async def acquire(self, amount: float = 1.0) -> float:
        """Take ``amount`` tokens, sleeping as needed. Returns seconds waited."""
        amount = min(amount, self.capacity)
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= amount:
                    self._tokens -= amount
                    return waited
                delay = (amount - self._tokens) / self.rate_per_second
                logger.debug("Rate limit reached, waiting %.2fs", delay)
                await asyncio.sleep(delay)
                waited += delay
