"""Rate limiter - token buckets with lazy, continuous refill."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from ..schemas.config import ModelCatalog
from .errors import UnknownModelError

logger = logging.getLogger(__name__)


@dataclass
class RateBucket:
    """Token bucket state for one model.

    Attributes:
        tokens: Tokens currently available, always within [0, capacity]
        capacity: Maximum tokens (burst size)
        refill_per_s: Tokens added per second
        last_refill: Time of the last refill computation
    """
    tokens: float
    capacity: float
    refill_per_s: float
    last_refill: float

    def refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill."""
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_s)
        self.last_refill = now

    def wait_for(self, amount: float = 1.0) -> float:
        """Seconds until `amount` tokens will be available."""
        missing = amount - self.tokens
        if missing <= 0:
            return 0.0
        return missing / self.refill_per_s


class RateLimiter:
    """Short-horizon throttle, one token bucket per model.

    acquire() never sleeps: it either takes a token and returns 0.0, or
    takes nothing and returns how long the caller should wait. The caller
    decides whether to sleep or reschedule.
    """

    def __init__(self, catalog: ModelCatalog, clock: Callable[[], float] = time.monotonic):
        """Initialize rate limiter.

        Args:
            catalog: Model catalog supplying bucket capacity and refill rate
            clock: Time source in seconds (monotonic by default)
        """
        self.catalog = catalog
        self.clock = clock
        self._buckets: Dict[str, RateBucket] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _bucket(self, model: str) -> RateBucket:
        # Caller must hold the model lock
        bucket = self._buckets.get(model)
        if bucket is None:
            config = self.catalog.get(model)
            bucket = RateBucket(
                tokens=config.rate_capacity,
                capacity=config.rate_capacity,
                refill_per_s=config.rate_refill_per_s,
                last_refill=self.clock(),
            )
            self._buckets[model] = bucket
        return bucket

    def _lock_for(self, model: str) -> threading.Lock:
        if model not in self.catalog:
            raise UnknownModelError(f"Model not in catalog: {model}")
        with self._guard:
            lock = self._locks.get(model)
            if lock is None:
                lock = self._locks[model] = threading.Lock()
            return lock

    def acquire(self, model: str) -> float:
        """Try to take one token for a model.

        Args:
            model: Model identifier

        Returns:
            0.0 if a token was taken, otherwise seconds until one is available
        """
        with self._lock_for(model):
            bucket = self._bucket(model)
            bucket.refill(self.clock())
            wait = bucket.wait_for(1.0)
            if wait == 0.0:
                bucket.tokens -= 1.0
                return 0.0

        logger.debug(f"Rate limited: model={model}, wait {wait:.3f}s")
        return wait

    def available(self, model: str) -> float:
        """Get tokens currently available for a model."""
        with self._lock_for(model):
            bucket = self._bucket(model)
            bucket.refill(self.clock())
            return bucket.tokens
