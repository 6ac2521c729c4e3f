"""
Token-bucket admission control.

Each limiter holds a token count capped at `burst`, refilled continuously
at `rate` tokens per second. A request is admitted by taking one token;
when none is available it is rejected immediately, never queued.

The server owns two instances: a burst-tolerant one in front of every
request and a strict one in front of image ingestion.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict

from .config import LimiterConfig
from .validation import RateLimitedError

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Thread-safe token bucket.

    Refill and consumption happen under one lock with one clock read per
    call, so concurrent callers can neither lose a refill nor both take
    the last token.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
        name: str = "limiter",
    ):
        if rate < 0:
            raise ValueError(f"rate must be >= 0, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be >= 1, got {burst}")

        self.rate = float(rate)
        self.burst = int(burst)
        self.name = name
        self._clock = clock

        # Start with a full bucket
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = threading.Lock()

        # Statistics
        self._stats = {"allowed": 0, "denied": 0}

    @classmethod
    def from_config(
        cls, config: LimiterConfig, name: str = "limiter", **kwargs: Any
    ) -> "TokenBucket":
        return cls(config.rate, config.burst, name=name, **kwargs)

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        # A clock that steps backwards only loses the elapsed time
        self._last_refill = now

    def allow(self) -> bool:
        """
        Take one token if available.

        Returns:
            bool: True if the request is admitted, False if it must be rejected
        """
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self._stats["allowed"] += 1
                return True

            self._stats["denied"] += 1
            logger.debug(f"{self.name}: denied ({self._tokens:.2f} tokens)")
            return False

    def require(self) -> None:
        """
        Take one token or reject the request.

        Raises:
            RateLimitedError: If no token is available
        """
        if not self.allow():
            raise RateLimitedError(f"{self.name} rate limit exceeded")

    @property
    def tokens(self) -> float:
        """Current token level after refill."""
        with self._lock:
            self._refill(self._clock())
            return self._tokens

    def get_stats(self) -> Dict[str, Any]:
        return {
            "rate": self.rate,
            "burst": self.burst,
            "tokens": round(self.tokens, 3),
            **self._stats,
        }
