"""
Retry Boundary

Exponential backoff around calls to external collaborators. Only the
exception types a policy is told to retry are retried; anything else
propagates on the first failure.
"""

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar('T')


class RetryPolicy:
    """Retries a callable with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize retry policy.

        Args:
            max_retries: Total number of attempts, including the first one
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            sleep: Sleep function, replaceable in tests
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.logger = logging.getLogger(f"{__name__}.RetryPolicy")

    def get_delay(self, attempt: int) -> float:
        """
        Get the delay after a failed attempt using exponential backoff.

        Args:
            attempt: Zero-based index of the attempt that just failed

        Returns:
            Delay in seconds
        """
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def call(self, func: Callable[[], T], retry_on: Tuple[Type[BaseException], ...],
             description: Optional[str] = None) -> T:
        """
        Call ``func`` until it succeeds or the attempts are used up.

        Args:
            func: Zero-argument callable
            retry_on: Exception types that trigger another attempt
            description: Label used in log messages

        Returns:
            Whatever ``func`` returns

        Raises:
            The last exception raised by ``func``
        """
        label = description or getattr(func, '__name__', 'call')

        for attempt in range(self.max_retries):
            try:
                return func()
            except retry_on as e:
                if attempt >= self.max_retries - 1:
                    self.logger.error(f"{label} failed after {self.max_retries} attempts: {e}")
                    raise
                delay = self.get_delay(attempt)
                self.logger.warning(f"{label} failed (attempt {attempt + 1}/{self.max_retries}): {e}; "
                                    f"retrying in {delay:.1f}s")
                self._sleep(delay)

        raise RuntimeError("unreachable")
