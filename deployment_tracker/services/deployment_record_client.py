"""
Client for the artifact metadata deployment-record API.

post_one() is synchronous and safe to call from several workers at once:
the session, the rate limiter and the token provider are all shared.

Retry policy:
- 2xx: success
- 4xx except 429: ClientError, never retried (at any layer)
- network error, 5xx, 429: soft failure, retried with backoff up to `retries` times
- retries exhausted: DeliveryExhaustedError, the caller requeues the whole item
"""
from __future__ import annotations

import threading
import time
from typing import Optional

import requests

from deployment_tracker.core.logging_config import get_delivery_logger
from deployment_tracker.core.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_JITTER,
    DEFAULT_MAX_DELAY,
    DEFAULT_RETRIES,
    DeliveryOutcome,
    backoff_delay,
    classify_status,
    sleep_with_cancel,
)
from deployment_tracker.monitoring import metrics
from deployment_tracker.schemas.deployment_record import DeploymentRecord
from deployment_tracker.services.github_app_auth import InstallationTokenProvider, TokenError
from deployment_tracker.services.rate_limiter import TokenBucket
from deployment_tracker.utils.egress_guard import validate_base_url, validate_organization
from deployment_tracker.utils.http_client import http_post, new_session

logger = get_delivery_logger()

DEFAULT_TIMEOUT_SECONDS = 5.0
# 20 req/sec with burst of 50
DEFAULT_RATE_LIMIT = 20.0
DEFAULT_RATE_BURST = 50


class DeliveryError(Exception):
    """Base class for failures to deliver a deployment record."""
    pass


class ClientError(DeliveryError):
    """The API rejected the record with a non-retryable 4xx status."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(f"client_error: unexpected status code: {status_code}{message}")


class DeliveryExhaustedError(DeliveryError):
    """All attempts failed with retryable errors."""
    pass


class DeliveryCancelledError(DeliveryError):
    """The caller cancelled while waiting for the rate limiter or a backoff."""
    pass


class DeploymentRecordClient:
    """Posts DeploymentRecords to {base_url}/orgs/{org}/artifacts/metadata/deployment-record."""

    def __init__(
        self,
        base_url: str,
        org: str,
        api_token: str = "",
        token_provider: Optional[InstallationTokenProvider] = None,
        retries: int = DEFAULT_RETRIES,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        rate_limiter: Optional[TokenBucket] = None,
        session: Optional[requests.Session] = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        jitter: float = DEFAULT_JITTER,
        max_delay: float = DEFAULT_MAX_DELAY,
    ):
        self.base_url = validate_base_url(base_url)
        self.org = validate_organization(org)
        self.api_token = api_token
        # An installation token takes precedence over the static token
        self.token_provider = token_provider
        self.retries = retries
        self.timeout = timeout
        self.rate_limiter = rate_limiter or TokenBucket(DEFAULT_RATE_LIMIT, DEFAULT_RATE_BURST)
        self.base_delay = base_delay
        self.jitter = jitter
        self.max_delay = max_delay
        self._session = session or new_session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/orgs/{self.org}/artifacts/metadata/deployment-record"

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token_provider is not None:
            try:
                token = self.token_provider.token()
            except TokenError as exc:
                raise DeliveryError(f"failed to get access token: {exc}") from exc
            headers["Authorization"] = f"Bearer {token}"
        elif self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def post_one(self, record: DeploymentRecord, cancel: Optional[threading.Event] = None) -> None:
        """
        Post a single deployment record.

        Raises:
            ValueError: record is None
            ClientError: permanent rejection, do not retry
            DeliveryExhaustedError: every attempt failed with a retryable error
            DeliveryCancelledError: `cancel` was set while waiting
            DeliveryError: an access token could not be obtained
        """
        if record is None:
            raise ValueError("record cannot be nil")

        if not self.rate_limiter.wait(cancel):
            raise DeliveryCancelledError("rate limiter wait failed: cancelled")

        body = record.to_json()
        last_error: Optional[str] = None
        last_exc: Optional[BaseException] = None

        # The first attempt is not a retry!
        for attempt in range(self.retries + 1):
            if attempt > 0:
                delay = backoff_delay(
                    attempt,
                    base_delay=self.base_delay,
                    jitter=self.jitter,
                    max_delay=self.max_delay,
                )
                if not sleep_with_cancel(delay, cancel):
                    raise DeliveryCancelledError(
                        f"cancelled during retry backoff: last_error={last_error}"
                    )

            headers = self._headers()

            start = time.perf_counter()
            try:
                resp = http_post(
                    self._session,
                    self.url,
                    data=body,
                    timeout=self.timeout,
                    headers=headers,
                    calling_module=__name__,
                )
            except requests.exceptions.RequestException as exc:
                metrics.POST_DEPLOYMENT_RECORD_TIMER.observe(time.perf_counter() - start)
                last_exc = exc
                last_error = f"post request failed: {exc}"
                logger.warning(
                    "recoverable error, re-trying attempt=%s retries=%s error=%s",
                    attempt,
                    self.retries,
                    last_error,
                )
                metrics.POST_RECORD_SOFT_FAIL.inc()
                continue
            metrics.POST_DEPLOYMENT_RECORD_TIMER.observe(time.perf_counter() - start)

            outcome = classify_status(resp.status_code)
            if outcome is DeliveryOutcome.SUCCESS:
                metrics.POST_RECORD_OK.inc()
                return

            last_exc = None
            last_error = f"unexpected status code: {resp.status_code}"
            if outcome is DeliveryOutcome.CLIENT_ERROR:
                metrics.POST_RECORD_CLIENT_ERROR.inc()
                logger.warning(
                    "client error, aborting attempt=%s error=%s",
                    attempt,
                    last_error,
                )
                raise ClientError(resp.status_code)

            logger.warning(
                "recoverable error, re-trying attempt=%s retries=%s error=%s",
                attempt,
                self.retries,
                last_error,
            )
            metrics.POST_RECORD_SOFT_FAIL.inc()

        metrics.POST_RECORD_HARD_FAIL.inc()
        logger.error("all retries exhausted count=%s error=%s", self.retries, last_error)
        raise DeliveryExhaustedError(f"all retries exhausted: {last_error}") from last_exc
