"""Bounded retry with exponential backoff.

This module provides the retry driver used around every agent invocation.
By default only transient network failures are retried; any other error is
surfaced to the caller immediately and unchanged.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .error_classifier import is_retryable_error

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    """Maximum number of retry attempts (total attempts = max_retries + 1)"""

    initial_delay: float = 1.0
    """Delay in seconds before the first retry"""

    max_delay: float = 10.0
    """Ceiling for the backoff delay in seconds"""

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")


@dataclass
class RetryContext:
    """State of one retry loop, handed to the on_retry callback."""

    attempt: int
    max_attempts: int
    delay: float


class RetryStrategy:
    """Runs an operation with bounded retries and exponential backoff."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_retry: Optional[Callable[[RetryContext, BaseException], None]] = None,
    ):
        """Initialize retry strategy.

        Args:
            config: Retry configuration (uses defaults if None)
            should_retry: Predicate deciding whether an error is worth
                retrying (defaults to transient network errors only)
            sleep: Function used to wait between attempts
            on_retry: Optional callback invoked before each backoff sleep
        """
        self.config = config or RetryConfig()
        self.should_retry = should_retry or is_retryable_error
        self._sleep = sleep or time.sleep
        self._on_retry = on_retry

    def calculate_retry_delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt.

        Exponential backoff: initial_delay * 2^(attempt-1), capped at max_delay.
        """
        delay = self.config.initial_delay * (2 ** (attempt - 1))
        return min(delay, self.config.max_delay)

    def run(self, operation: Callable[[], T]) -> T:
        """Execute the operation, retrying on retryable errors.

        The operation runs at most ``max_retries + 1`` times. The first error
        for which ``should_retry`` returns False is re-raised immediately;
        once retries are exhausted the last error is re-raised.
        """
        max_attempts = self.config.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except Exception as e:
                if attempt >= max_attempts or not self.should_retry(e):
                    raise

                delay = self.calculate_retry_delay(attempt)
                if self._on_retry:
                    self._on_retry(
                        RetryContext(attempt=attempt, max_attempts=max_attempts, delay=delay),
                        e,
                    )
                self._sleep(delay)

        # Unreachable: the loop either returns or raises.
        raise RuntimeError("retry loop exited without a result")


def retry_with_backoff(
    operation: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Functional shorthand for RetryStrategy(...).run(operation)."""
    strategy = RetryStrategy(
        RetryConfig(max_retries=max_retries, initial_delay=initial_delay, max_delay=max_delay),
        should_retry=should_retry,
        sleep=sleep,
    )
    return strategy.run(operation)
