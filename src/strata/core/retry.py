"""Retry strategies with exponential backoff and an injectable sleep.

Used around idempotent bootstrap steps only (history schema, table and index
creation). Applying a migration is never retried.

Example:
    >>> from strata.core.retry import ExponentialBackoff, RetryContext
    >>>
    >>> strategy = ExponentialBackoff(max_attempts=10, base_delay=0.5, max_delay=10.0)
    >>> ctx = RetryContext(strategy, sleep=lambda seconds: None)
    >>> ctx.run(lambda: "created")
    'created'
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another attempt should be made.

        Args:
            attempt: Number of attempts made so far
            error: The exception that caused the failure
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

    Attributes:
        max_attempts: Total number of attempts, first one included
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness so concurrent migrators don't retry in lockstep
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    max_attempts: int = 10
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Check if another attempt is allowed."""
        return attempt < self.max_attempts


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3), sleep=fake_sleep)
        >>> result = ctx.run(create_table)
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute function with retry logic.

        ``func`` receives no extra arguments; read ``self.attempt`` for the
        current (1-based) attempt number.

        Raises:
            The last exception once the strategy gives up
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                self.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "RetryContext",
]
