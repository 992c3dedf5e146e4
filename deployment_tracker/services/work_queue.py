"""
Rate limited work queue shared by all workers.

Semantics:
- An item is never in the queue twice. Adding an item that is already
  queued is a no-op.
- An item is never processed by two workers at once. Adding an item that is
  being processed marks it dirty; done() puts it back in the queue.
- add_rate_limited() re-adds a failed item after a per-item exponential
  backoff (outer retry, independent of the HTTP client retries).
- get() blocks until an item is available or the queue is shut down and
  drained.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Hashable, List, Optional, Set, Tuple

from deployment_tracker.services.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

# Per-item backoff: 5ms, 10ms, 20ms, ... capped at 1000s
DEFAULT_ITEM_BASE_DELAY = 0.005
DEFAULT_ITEM_MAX_DELAY = 1000.0
# Overall requeue budget: 10 qps with burst of 100
DEFAULT_BUCKET_QPS = 10.0
DEFAULT_BUCKET_BURST = 100


class ItemExponentialFailureRateLimiter:
    """Backoff doubles with every failure of the same item until forget()."""

    def __init__(
        self,
        base_delay: float = DEFAULT_ITEM_BASE_DELAY,
        max_delay: float = DEFAULT_ITEM_MAX_DELAY,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        try:
            backoff = self.base_delay * (2 ** exp)
        except OverflowError:
            return self.max_delay
        return min(backoff, self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class BucketRateLimiter:
    """Overall rate limit across all items; keeps a burst of failures from flooding the queue."""

    def __init__(self, bucket: TokenBucket):
        self.bucket = bucket

    def when(self, item: Hashable) -> float:
        return self.bucket.reserve()

    def num_requeues(self, item: Hashable) -> int:
        return 0

    def forget(self, item: Hashable) -> None:
        pass


class MaxOfRateLimiter:
    """Uses the longest delay of its limiters."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(DEFAULT_ITEM_BASE_DELAY, DEFAULT_ITEM_MAX_DELAY),
        BucketRateLimiter(TokenBucket(DEFAULT_BUCKET_QPS, DEFAULT_BUCKET_BURST)),
    )


class RateLimitingQueue:
    """Thread-safe coalescing FIFO with delayed and rate limited adds."""

    def __init__(self, rate_limiter=None, name: str = "workqueue"):
        self.name = name
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()

        self._cond = threading.Condition()
        self._queue: Deque[Any] = deque()
        # dirty maps an item to its most recently added instance so a requeue
        # carries the latest payload (e.g. the freshest deleted pod snapshot)
        self._dirty: Dict[Any, Any] = {}
        self._processing: Set[Any] = set()
        self._shutting_down = False

        # delayed adds: heap of (ready_at, seq, item); stale entries are skipped
        self._waiting: List[Tuple[float, int, Any]] = []
        self._waiting_ready: Dict[Any, float] = {}
        self._waiting_items: Dict[Any, Any] = {}
        self._seq = itertools.count()
        self._waiting_thread = threading.Thread(
            target=self._waiting_loop,
            name=f"{name}-waiting",
            daemon=True,
        )
        self._waiting_thread.start()

    # -- basic queue ---------------------------------------------------------

    def _add_locked(self, item: Any) -> None:
        if self._shutting_down:
            return
        if item in self._dirty:
            self._dirty[item] = item
            return
        self._dirty[item] = item
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify_all()

    def add(self, item: Any) -> None:
        with self._cond:
            self._add_locked(item)

    def get(self) -> Tuple[Optional[Any], bool]:
        """Block until an item is available. Returns (item, shutdown)."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            item = self._dirty.pop(item, item)
            self._processing.add(item)
            return item, False

    def done(self, item: Any) -> None:
        """Mark processing of item finished; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shut_down(self) -> None:
        """Stop accepting items; get() returns shutdown once the queue is drained."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        if self._waiting_thread is not threading.current_thread():
            self._waiting_thread.join(timeout=1.0)

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    # -- delaying ------------------------------------------------------------

    def add_after(self, item: Any, delay: float) -> None:
        """Add item once `delay` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = time.monotonic() + delay
            existing = self._waiting_ready.get(item)
            if existing is not None and existing <= ready_at:
                self._waiting_items[item] = item
                return
            self._waiting_ready[item] = ready_at
            self._waiting_items[item] = item
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._cond.notify_all()

    def _waiting_loop(self) -> None:
        with self._cond:
            while not self._shutting_down:
                now = time.monotonic()
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    if self._waiting_ready.get(item) != ready_at:
                        continue
                    del self._waiting_ready[item]
                    self._add_locked(self._waiting_items.pop(item, item))
                if self._waiting:
                    self._cond.wait(timeout=max(0.0, self._waiting[0][0] - now))
                else:
                    self._cond.wait()

    # -- rate limiting -------------------------------------------------------

    def add_rate_limited(self, item: Any) -> None:
        """Add item after the rate limiter says it is ok."""
        delay = self.rate_limiter.when(item)
        logger.debug("queue=%s requeue key=%s delay=%.3f", self.name, getattr(item, "key", item), delay)
        self.add_after(item, delay)

    def forget(self, item: Any) -> None:
        """Stop tracking failures for item (call after successful processing)."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Any) -> int:
        return self.rate_limiter.num_requeues(item)
