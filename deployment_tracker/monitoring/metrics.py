"""Prometheus counters and timers for event processing and record delivery."""
from prometheus_client import CollectorRegistry, Counter, Histogram

REGISTRY = CollectorRegistry(auto_describe=True)

EVENTS_PROCESSED_OK = Counter(
    "deptracker_events_processed_ok",
    "The total number of successful events",
    ["event_type"],
    registry=REGISTRY,
)

EVENTS_PROCESSED_FAILED = Counter(
    "deptracker_events_processed_failed",
    "The total number of failed events",
    ["event_type"],
    registry=REGISTRY,
)

EVENTS_PROCESSED_TIMER = Histogram(
    "deptracker_events_processed_timer",
    "The duration (seconds) for processing k8s events",
    ["status"],
    registry=REGISTRY,
)

POST_DEPLOYMENT_RECORD_TIMER = Histogram(
    "deptracker_post_deployment_record_timer",
    "The duration (seconds) for posting data to the GitHub API",
    registry=REGISTRY,
)

POST_RECORD_OK = Counter(
    "deptracker_post_record_ok",
    "The total number of successful posts",
    registry=REGISTRY,
)

POST_RECORD_SOFT_FAIL = Counter(
    "deptracker_post_record_soft_fail",
    "The total number of soft (recoverable) post failures",
    registry=REGISTRY,
)

POST_RECORD_HARD_FAIL = Counter(
    "deptracker_post_record_hard_fail",
    "The total number of hard post failures",
    registry=REGISTRY,
)

POST_RECORD_CLIENT_ERROR = Counter(
    "deptracker_post_record_client_error",
    "The total number of non-retryable client failures",
    registry=REGISTRY,
)


def sample_value(name: str, labels=None) -> float:
    """Current value of a sample in REGISTRY (0.0 when it has not been recorded)."""
    value = REGISTRY.get_sample_value(name, labels or {})
    return value or 0.0
