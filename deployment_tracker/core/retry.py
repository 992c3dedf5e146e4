"""
Bounded retries with backoff for deployment record delivery.

- Centralized backoff: base_delay, jitter, max_delay.
- Classify HTTP outcomes into success / retryable / non-retryable.
"""
from __future__ import annotations

import random
import threading
import time
from enum import Enum
from typing import Optional

# Defaults (can be overridden by callers)
DEFAULT_RETRIES = 3
DEFAULT_BASE_DELAY = 0.1
DEFAULT_JITTER = 0.05
DEFAULT_MAX_DELAY = 5.0

# Retryable 4xx: the server asked us to slow down
RETRYABLE_CLIENT_CODES = {429}


class DeliveryOutcome(str, Enum):
    """Classified result of a single delivery attempt (or of the whole call for HARD_FAIL)."""
    SUCCESS = "ok"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"
    CLIENT_ERROR = "client_error"


def classify_status(status_code: Optional[int]) -> DeliveryOutcome:
    """
    Classify an HTTP response status.

    None means no response was received (network error, timeout) and is retryable.
    2xx succeeds, 4xx other than 429 is permanent, everything else is retryable.
    """
    if status_code is None:
        return DeliveryOutcome.SOFT_FAIL
    if 200 <= status_code < 300:
        return DeliveryOutcome.SUCCESS
    if 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_CODES:
        return DeliveryOutcome.CLIENT_ERROR
    return DeliveryOutcome.SOFT_FAIL


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    jitter: float = DEFAULT_JITTER,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """
    Delay before retry number `attempt` (attempt >= 1).
    delay = min(max_delay, 2^attempt * base_delay + random[0, jitter)).
    """
    return min(max_delay, (2 ** attempt) * base_delay + random.uniform(0, jitter))


def sleep_with_cancel(delay: float, cancel: Optional[threading.Event] = None) -> bool:
    """Sleep for `delay` seconds. Returns False if `cancel` was set before the delay elapsed."""
    if delay <= 0:
        return not (cancel is not None and cancel.is_set())
    if cancel is None:
        time.sleep(delay)
        return True
    return not cancel.wait(delay)
