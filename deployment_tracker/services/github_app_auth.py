"""
GitHub App authentication: RS256 JWT -> installation access token.

The provider is shared by every delivery worker. Tokens are cached until
shortly before they expire; refresh happens under a lock so concurrent
workers trigger a single exchange.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional

import jwt
import requests

from deployment_tracker.core.config import ConfigError
from deployment_tracker.utils.http_client import http_post, new_session

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"

# Refresh this many seconds before the server-side expiry
TOKEN_REFRESH_MARGIN_SECONDS = 60
# Installation tokens are valid for one hour when the response has no expires_at
DEFAULT_TOKEN_TTL_SECONDS = 3600


class TokenError(Exception):
    """Raised when an installation token cannot be obtained."""
    pass


def _parse_numeric_id(value: str, label: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be numeric, got {value!r}") from exc


def _parse_expires_at(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.warning("Unparseable installation token expiry: %s", value)
        return None


class InstallationTokenProvider:
    """Mints and caches GitHub App installation tokens."""

    def __init__(
        self,
        app_id: str,
        install_id: str,
        private_key_path: str,
        base_url: str = GITHUB_API_BASE,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.app_id = _parse_numeric_id(app_id, "GitHub App ID")
        self.install_id = _parse_numeric_id(install_id, "GitHub App installation ID")
        try:
            with open(private_key_path, "r", encoding="utf-8") as fh:
                self._private_key = fh.read()
        except OSError as exc:
            raise ConfigError(
                f"Cannot read GitHub App private key {private_key_path}: {exc}"
            ) from exc

        # Fail at startup on a key PyJWT cannot sign with
        try:
            self._generate_app_jwt()
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise ConfigError(f"Invalid GitHub App private key {private_key_path}: {exc}") from exc

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or new_session()
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def _generate_app_jwt(self) -> str:
        """Generate a short-lived RS256 JWT for the GitHub App.

        GitHub requires:
        - iat: issued at (max 60s in the past)
        - exp: expiration (max 10 minutes from iat)
        - iss: GitHub App ID
        """
        now = int(time.time())
        payload = {
            "iat": now - 60,  # allow for clock skew
            "exp": now + (9 * 60),  # 9 minutes (under 10-min max)
            "iss": str(self.app_id),
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    def _exchange(self) -> None:
        """POST /app/installations/{installation_id}/access_tokens"""
        url = f"{self.base_url}/app/installations/{self.install_id}/access_tokens"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._generate_app_jwt()}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        try:
            resp = http_post(
                self._session,
                url,
                timeout=self.timeout,
                headers=headers,
                calling_module=__name__,
            )
        except requests.exceptions.RequestException as exc:
            raise TokenError(f"installation token request failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            logger.error(
                "GitHub installation token exchange failed: status=%s body=%s",
                resp.status_code,
                resp.text[:200],
            )
            raise TokenError(f"GitHub token exchange failed ({resp.status_code})")

        try:
            data = resp.json()
            token = data["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise TokenError("GitHub token exchange returned no token") from exc

        expires_at = _parse_expires_at(data.get("expires_at"))
        self._token = token
        self._expires_at = expires_at or (time.time() + DEFAULT_TOKEN_TTL_SECONDS)
        logger.info(
            "Refreshed installation token installation_id=%s expires_at=%s",
            self.install_id,
            data.get("expires_at"),
        )

    def token(self) -> str:
        """Return a valid installation token, refreshing it if needed."""
        with self._lock:
            if self._token is None or time.time() >= self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
                self._exchange()
            return self._token
