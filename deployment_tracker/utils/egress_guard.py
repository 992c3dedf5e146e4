"""
Egress Guard: validate where deployment records are sent.

This module provides centralized validation of the artifact metadata API
base URL and organization before any client is built, so an insecure or
injectable target is rejected at startup rather than on the first post.
"""
import re
import logging
from typing import Tuple

from deployment_tracker.core.config import ConfigError

logger = logging.getLogger(__name__)

# Plain HTTP is only allowed for these prefixes (local development, port-forwards)
LOCAL_HTTP_PREFIXES: Tuple[str, ...] = (
    "http://localhost",
    "http://127.0.0.1",
)

# In-cluster service DNS suffix; plain HTTP is allowed for in-cluster services
CLUSTER_LOCAL_MARKER = ".svc.cluster.local"

# Organization names end up in the URL path
VALID_ORG_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class EgressGuardError(ConfigError):
    """Raised when the outbound target violates the egress rules"""
    pass


def is_local_url(url: str) -> bool:
    """Check if a URL targets a local or in-cluster host"""
    return url.startswith(LOCAL_HTTP_PREFIXES) or CLUSTER_LOCAL_MARKER in url


def validate_base_url(base_url: str) -> str:
    """
    Validate and normalize the API base URL.

    Args:
        base_url: Configured base URL, with or without a scheme

    Returns:
        The URL with a scheme (https:// is added when none is given)

    Raises:
        EgressGuardError: If plain HTTP is used for a non-local host
    """
    if base_url.startswith("http://") and not is_local_url(base_url):
        logger.error("[EGRESS_GUARD] Insecure base URL rejected: %s", base_url)
        raise EgressGuardError(
            f"insecure URL not allowed: {base_url} (use HTTPS for non-local hosts)"
        )

    if not base_url.startswith(("https://", "http://")):
        base_url = "https://" + base_url

    return base_url


def validate_organization(org: str) -> str:
    """
    Validate the organization name to prevent URL injection.

    Raises:
        EgressGuardError: If the name is empty or has characters outside [A-Za-z0-9_-]
    """
    if not VALID_ORG_PATTERN.fullmatch(org or ""):
        raise EgressGuardError(
            f"invalid organization name: {org} (must be alphanumeric, hyphens, or underscores)"
        )
    return org
