"""
retry.py - Centralized retry policy

One RetryPolicy object decides, for every retried operation in the engine:
- how many attempts are made (max_attempts, including the first)
- how long to wait between attempts (exponential backoff, optional jitter)
- what counts as retryable (a predicate over the raised exception)

Writes are never retried. The orchestrator only uses a policy for reads
and for the post-approval allowance re-check.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .core import AllowanceNotPropagated, ReadError, ALLOWANCE_RECHECK_DELAY_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def _retry_read_errors(exc: BaseException) -> bool:
    return isinstance(exc, ReadError)


def _retry_short_allowance(exc: BaseException) -> bool:
    return isinstance(exc, AllowanceNotPropagated)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry configuration.

    delay_for(n) is the wait before attempt n + 1:
        min(initial_delay * exponential_base ** (n - 1), max_delay) * (1 + jitter * U[0, 1))
    """
    max_attempts: int = 3
    initial_delay: float = 0.2
    exponential_base: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.2
    retryable: Callable[[BaseException], bool] = field(default=_retry_read_errors, compare=False)
    name: str = "retry"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Seconds to wait after `attempt` (1-based) failed."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 1 + self.jitter * (rng or random).random()
        return delay

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.retryable(exc)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> T:
        """
        Await `operation` until it succeeds or the policy gives up.

        Non-retryable exceptions propagate immediately; the last retryable
        one propagates once attempts are exhausted. Cancellation is never
        retried.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.delay_for(attempt, rng)
                logger.warning(
                    "%s: attempt %d/%d failed (%s); retrying in %.2fs",
                    self.name, attempt, self.max_attempts, exc, delay,
                )
                await sleep(delay)


# Transient read failures: three attempts, ~0.2s then ~0.4s.
READ_POLICY = RetryPolicy(name="read")

# After an approval confirms: a short allowance is re-read once after a fixed 2s.
ALLOWANCE_PROPAGATION_POLICY = RetryPolicy(
    max_attempts=2,
    initial_delay=ALLOWANCE_RECHECK_DELAY_SECONDS,
    exponential_base=1.0,
    max_delay=ALLOWANCE_RECHECK_DELAY_SECONDS,
    jitter=0.0,
    retryable=_retry_short_allowance,
    name="allowance",
)