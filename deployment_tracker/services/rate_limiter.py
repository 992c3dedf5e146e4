"""Token bucket rate limiter shared by all delivery workers."""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from deployment_tracker.core.retry import sleep_with_cancel


class TokenBucket:
    """
    Token bucket: refills `rate` tokens per second up to `burst`.

    reserve() always takes a token and returns how long the caller must wait
    for it, so concurrent callers are served in reservation order.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self.rate = float(rate)
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def _advance(self, now: float) -> None:
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last = now

    def reserve(self) -> float:
        """Take one token and return the delay (seconds) before it may be used."""
        with self._lock:
            self._advance(self._clock())
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def _cancel_reservation(self) -> None:
        with self._lock:
            self._tokens = min(float(self.burst), self._tokens + 1.0)

    def wait(self, cancel: Optional[threading.Event] = None) -> bool:
        """
        Block until a token is available.
        Returns False (and gives the token back) if `cancel` is set first.
        """
        if cancel is not None and cancel.is_set():
            return False
        delay = self.reserve()
        if sleep_with_cancel(delay, cancel):
            return True
        self._cancel_reservation()
        return False
