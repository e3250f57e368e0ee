"""Retry policy - error classification and exponential backoff with jitter."""

import logging
import random
from enum import Enum
from typing import Optional

from .errors import InferenceError, Invalid, RateLimited, Unauthorized

logger = logging.getLogger(__name__)


class RetryDecision(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class RetryPolicy:
    """Decides whether a failed inference call is retried, and when.

    - RateLimited, Unavailable and unknown exceptions are retryable
    - Invalid and Unauthorized are terminal
    - Delay: min(base * 2 ** (attempt - 1), max_delay) plus up to
      jitter_fraction of that delay; a server-suggested retry-after wins
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
        jitter_fraction: float = 0.25,
        rng: Optional[random.Random] = None,
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Maximum calls per task, first attempt included
            base_delay_s: Delay after the first failed attempt
            max_delay_s: Cap on the computed delay (before jitter)
            jitter_fraction: Max random extra delay as a fraction of the delay
            rng: Random source (for deterministic tests)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter_fraction = jitter_fraction
        self.rng = rng or random.Random()

    def classify(self, error: BaseException) -> RetryDecision:
        """Classify an error raised by an inference call."""
        if isinstance(error, (Invalid, Unauthorized)):
            return RetryDecision.TERMINAL
        return RetryDecision.RETRYABLE

    def backoff(self, attempt: int) -> float:
        """Compute delay after the given (1-based) failed attempt."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = min(self.base_delay_s * (2 ** (attempt - 1)), self.max_delay_s)
        jitter = self.rng.uniform(0, self.jitter_fraction) * delay
        return delay + jitter

    def delay_for(self, error: BaseException, attempt: int) -> float:
        """Delay before the next attempt, preferring the server's retry-after."""
        if isinstance(error, RateLimited) and error.retry_after_s is not None:
            return max(0.0, error.retry_after_s)
        return self.backoff(attempt)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """True if the task should be re-enqueued after `attempt` calls failed."""
        if self.classify(error) == RetryDecision.TERMINAL:
            return False
        if attempt >= self.max_attempts:
            kind = error.kind.value if isinstance(error, InferenceError) else type(error).__name__
            logger.info(f"Retry budget exhausted after {attempt} attempts ({kind})")
            return False
        return True
