"""Exponential-backoff retry for retryable ride errors."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from ride_service.domain.errors import RideError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry an async call while it raises a retryable ``RideError``.

    back-off delay for retry *i* (0-indexed):
        ``base × multiplier^i × (1 + uniform(−jitter, jitter))``

    Non-retryable errors and anything that is not a ``RideError`` propagate
    on the first raise.
    """

    def __init__(
        self,
        max_retries: int = 2,
        backoff_base: float = 0.5,
        backoff_multiplier: float = 2.0,
        jitter: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.payment_max_retries,
            backoff_base=settings.payment_backoff_base_seconds,
            backoff_multiplier=settings.payment_backoff_multiplier,
            jitter=settings.payment_backoff_jitter,
        )

    def calculate_backoff(self, attempt: int) -> float:
        delay = self.backoff_base * (self.backoff_multiplier ** attempt)
        jitter_factor = 1.0 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay * jitter_factor)

    async def run(self, func: Callable[[], Awaitable[T]], label: str) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return await func()
            except RideError as exc:
                if not exc.retryable or attempt == self.max_retries:
                    if exc.retryable:
                        logger.warning(
                            "Max retries (%d) exceeded for %s", self.max_retries, label
                        )
                    raise
                delay = self.calculate_backoff(attempt)
                logger.warning(
                    "Retry %d/%d for %s after %s (backoff %.2fs)",
                    attempt + 1,
                    self.max_retries,
                    label,
                    exc,
                    delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")
