"""Process-wide admission limiter (token bucket)."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class TokenBucket:
    """Token bucket shared by every endpoint.

    Holds up to ``burst`` tokens (default ``2 * rate``) and refills at ``rate``
    tokens per second. Starts full. ``allow()`` never blocks.
    """

    def __init__(
        self,
        rate: float,
        burst: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self._lock = threading.Lock()
        self._rate = float(rate)
        self._burst = int(burst if burst is not None else 2 * rate)
        if self._burst < 1:
            raise ValueError(f"burst must be at least 1, got {self._burst}")
        self._clock = clock
        self._tokens = float(self._burst)
        self._last_refill = clock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._rate)
        self._last_refill = now

    def allow(self) -> bool:
        """Take one token if available."""
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens
