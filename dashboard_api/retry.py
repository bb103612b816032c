"""
Retry policy: exponential backoff with jitter.

``backoff`` is a pure function of the attempt number, and the jitter source
is injected, so delays can be asserted without real timers.
"""

import random
from typing import Callable, Optional

from .errors import is_retryable_error
from .types import RetryDecision


class RetryPolicy:
    """Decides whether and when a failed attempt is retried."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.3,
        multiplier: float = 2.0,
        max_delay: float = 8.0,
        jitter: Optional[Callable[[], float]] = random.random,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._jitter = jitter

    def backoff(self, attempt: int) -> float:
        """Capped exponential delay after the ``attempt``-th failure (1-based), without jitter."""
        exponent = max(0, attempt - 1)
        return min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

    def delay(self, attempt: int) -> float:
        """Backoff plus jitter in [0, base_delay)."""
        spread = self._jitter() * self.base_delay if self._jitter else 0.0
        return self.backoff(attempt) + spread

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        """
        Classify the failure of attempt number ``attempt`` (1-based).

        Only network errors, timeouts and 5xx responses are retried, and
        never past ``max_attempts`` total attempts.
        """
        if not is_retryable_error(error):
            return RetryDecision(False, 0.0, f"{type(error).__name__} is not retryable")
        if attempt >= self.max_attempts:
            return RetryDecision(False, 0.0, f"exhausted after {attempt} attempts")
        return RetryDecision(True, self.delay(attempt), f"{getattr(error, 'kind', 'error')} failure")

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, base_delay={self.base_delay}, "
            f"multiplier={self.multiplier}, max_delay={self.max_delay})"
        )
