"""
HTTP CLIENT WRAPPER

This is the only entry point for outbound HTTP requests in the controller
(the Kubernetes API client manages its own connections).

DO NOT:
- Use requests.post directly in services
- Build a new requests.Session per request

DO:
- Import this module: from deployment_tracker.utils.http_client import http_post
- Pass the long-lived session owned by the caller
- Let requests exceptions propagate; callers classify them
"""
import logging
import uuid
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


def new_session() -> requests.Session:
    """Create a session for connection reuse across posts and workers."""
    session = requests.Session()
    session.headers.update({"User-Agent": "deployment-tracker"})
    return session


def http_post(
    session: requests.Session,
    url: str,
    data: Optional[Any] = None,
    timeout: float = 5.0,
    headers: Optional[Dict[str, str]] = None,
    calling_module: str = "unknown",
) -> requests.Response:
    """
    Synchronous HTTP POST.

    Args:
        session: Session used to send the request
        url: The URL to request
        data: Pre-serialized request body
        timeout: Request timeout in seconds
        headers: Optional HTTP headers
        calling_module: Name of the calling module (for logging)

    Returns:
        requests.Response object. The body has been read so the
        connection can go back to the pool.

    Raises:
        requests.exceptions.RequestException: On network errors and timeouts
    """
    correlation_id = str(uuid.uuid4())[:8]
    request_headers = dict(headers or {})

    try:
        # POST requests must not follow redirects (RFC 7231)
        response = session.post(
            url,
            data=data,
            timeout=timeout,
            headers=request_headers,
            allow_redirects=False,
        )
    except requests.exceptions.RequestException as e:
        logger.debug(
            "[HTTP_CLIENT] POST request failed: %s (called from %s, correlation_id=%s): %s",
            url,
            calling_module,
            correlation_id,
            e,
        )
        raise

    # Drain the body to enable connection reuse
    _ = response.content
    logger.debug(
        "[HTTP_CLIENT] POST %s status=%s (called from %s, correlation_id=%s)",
        url,
        response.status_code,
        calling_module,
        correlation_id,
    )
    return response
