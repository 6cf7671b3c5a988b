"""Exponential backoff for opening provider streams.

Only failures classified as transient are retried. Everything else, and the
last transient failure once attempts run out, propagates to the caller.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from taskpilot.errors import ProviderTransientError, classify_provider_error
from taskpilot.logging import get_logger

log = get_logger("llm.retry")

T = TypeVar("T")


class ExponentialBackoff:
    """Backoff schedule with jitter.

    Delay formula: min(max_delay, base_delay * multiplier ** attempt) * (1 +/- jitter)
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter

    def delay(self, attempt: int) -> float:
        base = min(self.max_delay, self.base_delay * (self.multiplier**attempt))
        if self.jitter:
            base *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, base)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    backoff: ExponentialBackoff,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an operation, retrying transient provider failures.

    Raises:
        ProviderError: the classified failure once retries are exhausted,
            or immediately for a permanent failure.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_provider_error(e)
            if not isinstance(error, ProviderTransientError) or attempt >= backoff.max_retries:
                if error is e:
                    raise
                raise error from e
            wait = backoff.delay(attempt)
            attempt += 1
            log.warning(
                "Transient provider error (attempt %d/%d), retrying in %.2fs: %s",
                attempt,
                backoff.max_retries,
                wait,
                e,
            )
            await sleep(wait)
